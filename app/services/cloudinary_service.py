# app/services/cloudinary_service.py

import logging
from typing import Optional, Dict, Any

import cloudinary
import cloudinary.uploader

from app.config import settings

logger = logging.getLogger(__name__)


class CloudinaryService:
    def __init__(self):
        self.configured = bool(settings.cloudinary_cloud_name and settings.cloudinary_api_key)
        if self.configured:
            cloudinary.config(
                cloud_name=settings.cloudinary_cloud_name,
                api_key=settings.cloudinary_api_key,
                api_secret=settings.cloudinary_api_secret,
                secure=True
            )

    def upload_image(self, file_content: bytes, public_id: str, folder: str = "verifly/scans", **options) -> Dict[str, Any]:
        """Upload an image to Cloudinary"""
        if not self.configured:
            raise RuntimeError("Cloudinary is not configured")
        try:
            return cloudinary.uploader.upload(
                file_content,
                public_id=public_id,
                folder=folder,
                resource_type="image",
                **options
            )
        except Exception as e:
            raise RuntimeError(f"Cloudinary upload failed: {e}") from e

    def store_scan_image(self, file_content: bytes, user_id: str, stamp: str) -> Optional[str]:
        """Keep a copy of a scanned upload. Returns its URL, or None if storage failed."""
        try:
            result = self.upload_image(file_content, public_id=f"user_{user_id}_{stamp}")
            return result["secure_url"]
        except RuntimeError as e:
            logger.warning("Scan image not stored: %s", e)
            return None


# Create the instance that will be imported
cloudinary_service = CloudinaryService()
