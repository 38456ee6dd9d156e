from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from streamgate.core.errors import InvalidFormat


@dataclass(frozen=True)
class FormatPlan:
    """Extractor arguments and response shape for one format token"""
    token: str
    extraction_args: Tuple[str, ...]
    content_type: str
    file_ext: str

    @property
    def content_disposition(self) -> str:
        return f'attachment; filename="stream.{self.file_ext}"'


_AUDIO_M4A = (('-f', 'bestaudio[ext=m4a]/bestaudio'), 'audio/mp4', 'm4a')
# Only single-file formats can be written to stdout; merged video+audio needs a file.
_VIDEO_MP4 = (('-f', 'best[ext=mp4]/best'), 'video/mp4', 'mp4')

_PLANS: Dict[str, Tuple[Tuple[str, ...], str, str]] = {
    'audio': _AUDIO_M4A,
    'm4a': _AUDIO_M4A,
    'mp3': (('-f', 'bestaudio/best', '-x', '--audio-format', 'mp3'), 'audio/mpeg', 'mp3'),
    'opus': (('-f', 'bestaudio[ext=webm]/bestaudio'), 'audio/webm', 'webm'),
    'video': _VIDEO_MP4,
    'mp4': _VIDEO_MP4,
    'webm': (('-f', 'best[ext=webm]/best'), 'video/webm', 'webm'),
}


def supported_formats() -> List[str]:
    return sorted(_PLANS)


def resolve(token: Optional[str]) -> FormatPlan:
    """
    Map a format token to its plan.
    Empty and unknown tokens raise InvalidFormat; there is no silent fallback.
    """
    normalized = (token or '').strip().lower()
    if normalized not in _PLANS:
        raise InvalidFormat(
            f"Unsupported format: {token!r}",
            details=f"Supported formats: {', '.join(supported_formats())}",
        )

    args, content_type, ext = _PLANS[normalized]
    return FormatPlan(
        token=normalized,
        extraction_args=args,
        content_type=content_type,
        file_ext=ext,
    )
