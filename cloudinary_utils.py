import logging

from cloudinary import config, uploader
from cloudinary.exceptions import Error as CloudinaryError

from config import CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET, CLOUDINARY_NAME, MAX_UPLOAD_MB
from errors import ValidationFailedError, VotingError

logger = logging.getLogger(__name__)

config(
    cloud_name=CLOUDINARY_NAME,
    api_key=CLOUDINARY_API_KEY,
    api_secret=CLOUDINARY_API_SECRET
)

CANDIDATE_PHOTO_FOLDER = "college_voting/candidates/photos"
CANDIDATE_SYMBOL_FOLDER = "college_voting/candidates/symbols"


def validate_image(content_type: str, size: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise ValidationFailedError("Only image uploads are allowed", details={"content_type": content_type})
    if size > MAX_UPLOAD_MB * 1024 * 1024:
        raise ValidationFailedError(
            f"Image exceeds the {MAX_UPLOAD_MB} MB limit", details={"size": size, "max_mb": MAX_UPLOAD_MB}
        )


def upload_image_to_cloudinary(file: bytes, folder: str) -> str:
    """Uploads an image to Cloudinary and returns the URL."""
    try:
        response = uploader.upload(
            file,
            folder=folder,
            resource_type="image"
        )
    except CloudinaryError as e:
        logger.exception("Image upload to %s failed", folder)
        raise VotingError(f"Image upload failed: {e}", code="UPLOAD_FAILED")
    return response["secure_url"]
