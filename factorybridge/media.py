from __future__ import annotations

from pathlib import Path

import requests


def download_video(uri: str, api_key: str, output_path: Path, timeout: int = 120) -> Path:
    """Fetch a finished inspection video to ``output_path``."""
    headers = {"x-goog-api-key": api_key}
    with requests.get(uri, headers=headers, timeout=timeout, stream=True) as response:
        response.raise_for_status()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("wb") as handle:
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                if chunk:
                    handle.write(chunk)
    return output_path


def save_image(data: bytes, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)
    return output_path
