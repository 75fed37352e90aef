"""
QR Code Generator Module - Event Attendance Portal

This module renders QR codes and participant flyers. Rendering is pure: it
turns strings into Pillow images and never touches the database.

Features:
- QR code rendering with size, margin and error-correction options
- PNG / base64 data URL helpers for emails and downloads
- Participant QR generation from the identity codec
- Flyer rendering with participant name and event details
"""

import base64
import io
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

import qrcode
from PIL import Image, ImageDraw, ImageFont


class RenderFailure(Exception):
    """Raised when an image cannot be produced from the given input."""


ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,  # ~7% error correction
    'M': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
    'Q': qrcode.constants.ERROR_CORRECT_Q,  # ~25% error correction
    'H': qrcode.constants.ERROR_CORRECT_H,  # ~30% error correction
}

FLYER_PRIMARY = (0, 100, 0)
FLYER_ACCENT = (123, 192, 67)


class QRGenerator:
    """
    QR code and flyer renderer for the attendance portal.
    """

    def __init__(self, codec=None, settings: Optional[Dict[str, Any]] = None):
        """
        Initialize the QR code generator.

        Args:
            codec: IdentityCodec used to build participant tokens
            settings (dict): Optional overrides for size, margin, error correction,
                flyer background and flyer dimensions
        """
        self.codec = codec
        self.logger = logging.getLogger(__name__)

        self.default_settings = {
            'size': 200,
            'margin': 2,
            'error_correction': 'M',
            'fill_color': 'black',
            'back_color': 'white',
            'flyer_background': None,
            'flyer_width': 900,
            'flyer_height': 1200,
        }
        if settings:
            self.default_settings.update({k: v for k, v in settings.items() if v is not None})

    def render_qr(self, payload: str, size: Optional[int] = None, margin: Optional[int] = None,
                  error_correction: Optional[str] = None) -> Image.Image:
        """
        Render a payload string into a square QR image.

        Args:
            payload (str): Data to encode
            size (int): Output width/height in pixels
            margin (int): Quiet zone in modules
            error_correction (str): One of L, M, Q, H

        Returns:
            Image.Image: RGB image of ``size`` x ``size`` pixels

        Raises:
            RenderFailure: Empty payload or invalid options
        """
        size = self.default_settings['size'] if size is None else size
        margin = self.default_settings['margin'] if margin is None else margin
        level = (error_correction or self.default_settings['error_correction']).upper()

        if not payload:
            raise RenderFailure("Cannot render an empty QR payload")
        if not isinstance(size, int) or size <= 0:
            raise RenderFailure(f"Invalid QR size: {size}")
        if not isinstance(margin, int) or margin < 0:
            raise RenderFailure(f"Invalid QR margin: {margin}")
        if level not in ERROR_CORRECTION_LEVELS:
            raise RenderFailure(f"Invalid error correction level: {error_correction}")

        try:
            qr = qrcode.QRCode(
                version=None,
                error_correction=ERROR_CORRECTION_LEVELS[level],
                box_size=10,
                border=margin
            )
            qr.add_data(payload)
            qr.make(fit=True)

            img = qr.make_image(
                fill_color=self.default_settings['fill_color'],
                back_color=self.default_settings['back_color']
            ).convert('RGB')
        except Exception as e:
            self.logger.error(f"QR code rendering failed: {str(e)}")
            raise RenderFailure(str(e)) from e

        return img.resize((size, size), Image.Resampling.NEAREST)

    @staticmethod
    def to_png_bytes(img: Image.Image) -> bytes:
        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return buffer.getvalue()

    def to_data_url(self, img: Image.Image) -> str:
        encoded = base64.b64encode(self.to_png_bytes(img)).decode()
        return f"data:image/png;base64,{encoded}"

    def generate_participant_qr(self, participant_id: str, **options) -> Dict[str, Any]:
        """
        Generate the attendance QR code for a participant.

        Args:
            participant_id (str): Participant id
            **options: Forwarded to ``render_qr``

        Returns:
            dict: Token, PNG bytes, base64 image and filename
        """
        if self.codec is None:
            raise RenderFailure("No identity codec configured")

        qr_data = self.codec.encode(participant_id)
        img = self.render_qr(qr_data, **options)
        png = self.to_png_bytes(img)

        self.logger.debug(f"QR code generated for participant {participant_id}")
        return {
            'success': True,
            'qr_data': qr_data,
            'png': png,
            'image_base64': base64.b64encode(png).decode(),
            'image_size': img.size,
            'filename': f"qr_{participant_id}.png",
            'participant_id': participant_id,
            'generated_at': datetime.now().isoformat()
        }

    def _load_font(self, size: int, bold: bool = False):
        candidates = ['DejaVuSans-Bold.ttf', 'arialbd.ttf'] if bold else ['DejaVuSans.ttf', 'arial.ttf']
        for name in candidates:
            try:
                return ImageFont.truetype(name, size)
            except (IOError, OSError):
                continue
        return ImageFont.load_default(size=size)

    def _flyer_canvas(self, width: int, height: int) -> Image.Image:
        background = self.default_settings.get('flyer_background')
        if background and os.path.exists(background):
            try:
                with Image.open(background) as bg:
                    return bg.convert('RGB').resize((width, height))
            except (IOError, OSError) as e:
                self.logger.warning(f"Flyer background unusable, using plain canvas: {str(e)}")

        canvas = Image.new('RGB', (width, height), 'white')
        draw = ImageDraw.Draw(canvas)
        draw.rectangle([0, 0, width, 260], fill=FLYER_PRIMARY)
        draw.rectangle([0, height - 80, width, height], fill=FLYER_ACCENT)
        return canvas

    def _draw_centered(self, draw, text, y, font, fill, left, right):
        bbox = draw.textbbox((0, 0), text, font=font)
        text_width = bbox[2] - bbox[0]
        draw.text((left + (right - left - text_width) // 2, y), text, fill=fill, font=font)
        return bbox[3] - bbox[1]

    def render_flyer(self, participant_name: str, event: Dict[str, Any],
                     qr_token: Optional[str] = None) -> Image.Image:
        """
        Compose a printable flyer for a participant.

        Args:
            participant_name (str): Name shown in the banner
            event (dict): Event with name, theme, start_date, end_date, location
            qr_token (str): Optional attendance token rendered in the corner

        Returns:
            Image.Image: Flyer image
        """
        if not participant_name or not participant_name.strip():
            raise RenderFailure("Participant name is required for a flyer")

        width = self.default_settings['flyer_width']
        height = self.default_settings['flyer_height']
        img = self._flyer_canvas(width, height)
        draw = ImageDraw.Draw(img)

        title_font = self._load_font(48, bold=True)
        body_font = self._load_font(28)
        name_font = self._load_font(36, bold=True)

        y = 70
        y += self._draw_centered(draw, event.get('name', ''), y, title_font, 'white', 0, width) + 30
        if event.get('theme'):
            self._draw_centered(draw, event['theme'], y, body_font, 'white', 0, width)

        details = [
            f"{event.get('start_date', '')} - {event.get('end_date', '')}",
            event.get('location', ''),
        ]
        y = 340
        for line in details:
            if line.strip(' -'):
                y += self._draw_centered(draw, line, y, body_font, FLYER_PRIMARY, 0, width) + 20

        # Name banner
        box = [200, height - 420 - 110, width - 50, height - 420]
        draw.rounded_rectangle(box, radius=15, fill=(255, 255, 255), outline=FLYER_ACCENT, width=3)
        self._draw_centered(draw, participant_name.strip().upper(), box[1] + 35,
                            name_font, FLYER_PRIMARY, box[0], box[2])

        if qr_token:
            qr_img = self.render_qr(qr_token, size=220, margin=1)
            img.paste(qr_img, (width - 220 - 40, height - 80 - 220 - 30))

        return img
