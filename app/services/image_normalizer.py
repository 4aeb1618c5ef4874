"""
图片标准化服务

将上传的图片统一重新编码为固定质量的 JPEG，丢弃原格式和元数据（EXIF、ICC）
"""
import io
import logging
from typing import BinaryIO, Optional, Union

from PIL import Image, ImageOps, UnidentifiedImageError

from app.core.exceptions import ImageDecodeError

logger = logging.getLogger(__name__)

OUTPUT_MIME_TYPE = "image/jpeg"

# 声明为这些类型的文件即使无法识别也按图片处理（随后报解码错误）
RASTER_IMAGE_TYPES = {
    "image/jpeg", "image/jpg", "image/pjpeg", "image/png", "image/gif",
    "image/bmp", "image/webp", "image/tiff", "image/x-ms-bmp",
}

IMAGE_POLICIES = ("auto", "all", "none")


class ImageNormalizer:
    """图片标准化"""

    def __init__(self, quality: int = 90, policy: str = "auto"):
        """
        初始化

        Args:
            quality: JPEG 质量 (1-100)
            policy: auto 仅处理图片; all 处理所有文件; none 不处理
        """
        if policy not in IMAGE_POLICIES:
            raise ValueError(f"unknown image policy: {policy}")
        self.quality = quality
        self.policy = policy

    @staticmethod
    def sniff_format(data: bytes) -> Optional[str]:
        """按内容识别图片格式，无法识别时返回 None"""
        try:
            with Image.open(io.BytesIO(data)) as img:
                return img.format
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
            return None

    def is_image(self, data: bytes, content_type: Optional[str] = None) -> bool:
        if self.sniff_format(data):
            return True
        if content_type:
            return content_type.split(";")[0].strip().lower() in RASTER_IMAGE_TYPES
        return False

    def should_normalize(self, data: bytes, content_type: Optional[str] = None) -> bool:
        if self.policy == "none":
            return False
        if self.policy == "all":
            return True
        return self.is_image(data, content_type)

    def normalize(self, stream: Union[bytes, BinaryIO]) -> io.BytesIO:
        """
        解码图片并重新编码为 JPEG

        Args:
            stream: 图片内容或二进制流

        Returns:
            指向开头的 BytesIO

        Raises:
            ImageDecodeError: 内容不是可识别的图片
        """
        if isinstance(stream, (bytes, bytearray)):
            stream = io.BytesIO(stream)

        try:
            with Image.open(stream) as img:
                img.load()
                image = ImageOps.exif_transpose(img)
                image = self._to_rgb(image)
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise ImageDecodeError(f"Unable to decode image: {e}") from e
        except (OSError, ValueError, SyntaxError) as e:
            # 截断或损坏的图片
            raise ImageDecodeError(f"Unable to decode image: {e}") from e

        buf = io.BytesIO()
        try:
            image.save(buf, format="JPEG", quality=self.quality)
        except (OSError, ValueError) as e:
            raise ImageDecodeError(f"Unable to compress image: {e}") from e

        buf.seek(0)
        return buf

    @staticmethod
    def _to_rgb(image: Image.Image) -> Image.Image:
        """JPEG 不支持透明通道，透明部分填充白色背景"""
        if image.mode == "P":
            image = image.convert("RGBA")

        if image.mode in ("RGBA", "LA"):
            background = Image.new("RGB", image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[-1])
            return background

        if image.mode != "RGB":
            return image.convert("RGB")
        return image
