import logging
import os
import tempfile
from datetime import datetime
from typing import Optional

from PIL import Image, ImageDraw, ImageFont
from sqlalchemy.orm import Session

from services import get_database_status, get_top_countries_by_gdp

logger = logging.getLogger(__name__)

FONT_BOLD = "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"
FONT_REGULAR = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"


def _load_fonts():
    try:
        return (
            ImageFont.truetype(FONT_BOLD, 32),
            ImageFont.truetype(FONT_BOLD, 24),
            ImageFont.truetype(FONT_REGULAR, 18),
        )
    except OSError:
        default = ImageFont.load_default()
        return default, default, default


def _save_atomically(img: Image.Image, image_path: str):
    """Write to a temp file beside the target, then os.replace it into place."""
    fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(image_path) or ".", suffix=".png.tmp")
    try:
        with os.fdopen(fd, "wb") as tmp_file:
            img.save(tmp_file, format="PNG")
        os.replace(tmp_path, image_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def generate_summary_image(total_countries: int, top_countries: list, timestamp: Optional[datetime], image_path: str) -> str:
    """Render the summary PNG to ``image_path`` and return the path."""
    os.makedirs(os.path.dirname(image_path) or ".", exist_ok=True)

    width = 800
    height = 600
    img = Image.new('RGB', (width, height), color='white')
    draw = ImageDraw.Draw(img)
    title_font, header_font, body_font = _load_fonts()

    draw.rectangle([0, 0, width, 100], fill='#2c3e50')
    title = "Country Summary Report"
    left, top, right, bottom = draw.textbbox((0, 0), title, font=title_font)
    draw.text(((width - (right - left)) // 2, (100 - (bottom - top)) // 2), title, fill='white', font=title_font)

    y_offset = 130
    draw.text((50, y_offset), f"Total Countries: {total_countries}", fill='black', font=header_font)

    y_offset += 50
    draw.text((50, y_offset), "Top 5 Countries by Estimated GDP:", fill='black', font=header_font)

    y_offset += 40
    if not top_countries:
        draw.text((70, y_offset), "No GDP estimates available", fill='#34495e', font=body_font)
        y_offset += 35
    for i, country in enumerate(top_countries, 1):
        gdp_formatted = f"{country.estimated_gdp:,.2f}" if country.estimated_gdp is not None else "N/A"
        text = f"{i}. {country.name}: {gdp_formatted}"
        draw.text((70, y_offset), text, fill='#34495e', font=body_font)
        y_offset += 35

    y_offset += 30
    timestamp_str = timestamp.strftime("%Y-%m-%d %H:%M:%S UTC") if timestamp else "N/A"
    draw.text((50, y_offset), f"Last Refreshed: {timestamp_str}", fill='#7f8c8d', font=body_font)

    _save_atomically(img, image_path)
    logger.info("Summary image written to %s", image_path)
    return image_path


def get_image_path(settings) -> Optional[str]:
    """Path of the last rendered summary image, or None if there is none yet."""
    if os.path.isfile(settings.IMAGE_PATH):
        return settings.IMAGE_PATH
    return None


def summary_image_hook(settings):
    """Post-commit hook that re-reads the committed table and renders the image."""

    def render_summary_image(db: Session):
        total, last_refresh = get_database_status(db)
        top_countries = get_top_countries_by_gdp(db, limit=5)
        generate_summary_image(total, top_countries, last_refresh, settings.IMAGE_PATH)

    return render_summary_image
