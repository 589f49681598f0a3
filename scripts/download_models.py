"""Pre-download the detector weights.

Run this script once before starting the service to avoid downloading
models on the first verification:

    python scripts/download_models.py [FACE_WEIGHTS_URL]

The COCO person model is fetched by ultralytics itself. Face weights are
not distributed by ultralytics; pass a URL to fetch them into
``settings.face_detect_model``.
"""

import sys
from pathlib import Path

import httpx

from vhp.config import settings


def download(url: str, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with httpx.stream("GET", url, follow_redirects=True, timeout=60.0) as response:
        response.raise_for_status()
        with dest.open("wb") as f:
            for chunk in response.iter_bytes():
                f.write(chunk)


def main() -> None:
    from ultralytics import YOLO

    print(f"Downloading person model {settings.person_detect_model} ...")
    YOLO(settings.person_detect_model)

    face_path = Path(settings.face_detect_model)
    if face_path.exists():
        print(f"Face model present at {face_path}")
    elif len(sys.argv) > 1:
        print(f"Downloading face model to {face_path} ...")
        download(sys.argv[1], face_path)
    else:
        print(f"Face model missing at {face_path}; pass its URL as an argument.")
        sys.exit(1)

    print("All models ready.")


if __name__ == "__main__":
    main()
