from google.cloud import storage
from google.oauth2 import service_account
from PIL import Image
import io
import os
import logging
from datetime import datetime
import uuid
from typing import Tuple

logger = logging.getLogger(__name__)

# Longest edge per creative folder; anything else falls back to the desktop size
MAX_SIZE_BY_FOLDER = {
    "ads": (1920, 1920),
    "ads/tablet": (1280, 1280),
    "ads/mobile": (768, 768),
}


class StorageService:
    def __init__(self):
        credentials_path = os.getenv("GCS_CREDENTIALS_PATH")
        self.bucket_name = os.getenv("GCS_BUCKET_NAME")
        self.cdn_base_url = os.getenv("CDN_BASE_URL")

        if not credentials_path or not self.bucket_name or not self.cdn_base_url:
            raise ValueError("GCS configuration missing in .env file")

        # Make path absolute if it's relative
        if not os.path.isabs(credentials_path):
            credentials_path = os.path.join(os.getcwd(), credentials_path)

        if not os.path.exists(credentials_path):
            raise ValueError(f"GCS credentials file not found at: {credentials_path}")

        credentials = service_account.Credentials.from_service_account_file(
            credentials_path
        )
        self.client = storage.Client(credentials=credentials)
        self.bucket = self.client.bucket(self.bucket_name)

    def _generate_filename(self, original_filename: str, prefix: str) -> str:
        """Generate unique filename"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        unique_id = str(uuid.uuid4())[:8]
        # Creatives are always re-encoded as JPEG
        return f"{prefix}/{timestamp}_{unique_id}.jpg"

    def _optimize_image(self, file_content: bytes, max_size: Tuple[int, int] = (1920, 1920)) -> bytes:
        """Optimize and compress image"""
        image = Image.open(io.BytesIO(file_content))

        # Convert RGBA to RGB if needed
        if image.mode == 'RGBA':
            background = Image.new('RGB', image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[3])
            image = background
        elif image.mode != 'RGB':
            image = image.convert('RGB')

        image.thumbnail(max_size, Image.Resampling.LANCZOS)

        output = io.BytesIO()
        image.save(output, format='JPEG', quality=85, optimize=True)
        return output.getvalue()

    def upload_bytes(self, content: bytes, filename: str, folder: str) -> dict:
        """
        Upload raw image content to GCS

        Args:
            content: Image bytes as received from the client
            filename: Original filename
            folder: Folder name (ads, ads/mobile, ads/tablet)

        Returns:
            dict with 'url' and 'handle' (the object name inside the bucket)
        """
        try:
            optimized_content = self._optimize_image(
                content, MAX_SIZE_BY_FOLDER.get(folder, MAX_SIZE_BY_FOLDER["ads"])
            )
            object_name = self._generate_filename(filename or "", folder)

            blob = self.bucket.blob(object_name)
            blob.upload_from_string(
                optimized_content,
                content_type='image/jpeg'
            )
            blob.make_public()

            url = f"{self.cdn_base_url}/{object_name}"
            logger.info(f"Image uploaded successfully: {url}")
            return {"url": url, "handle": object_name}

        except Exception as e:
            raise Exception(f"Failed to upload image: {str(e)}")

    def delete_image(self, image_url: str) -> bool:
        """Delete image from GCS"""
        try:
            if not image_url or not image_url.startswith(self.cdn_base_url):
                return False

            # Extract object name from URL
            object_name = image_url.replace(f"{self.cdn_base_url}/", "")
            blob = self.bucket.blob(object_name)

            if blob.exists():
                blob.delete()

            return True
        except Exception as e:
            logger.error(f"Failed to delete image {image_url}: {str(e)}")
            return False


# Singleton instance - initialized when first imported
try:
    storage_service = StorageService()
except Exception as e:
    logger.error(f"Failed to initialize StorageService: {str(e)}")
    logger.error("Make sure GCS_CREDENTIALS_PATH, GCS_BUCKET_NAME, and CDN_BASE_URL are set in .env file")
    storage_service = None
