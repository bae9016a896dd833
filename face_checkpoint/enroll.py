# face_checkpoint/enroll.py
"""
enroll.py
Registry loading and one-time enrollment.

Registry file (JSON), image paths relative to the file:
[
  {"id": 1, "name": "Alice", "image": "alice.jpg"},
  ...
]

Each reference image goes through the same extraction capability used for
probing. An entry whose image cannot be read, has no face, or fails
extraction keeps an absent descriptor and is never matched; startup goes on
with whatever enrolled.

Run (prints the Loaded/Failed table):
python -m face_checkpoint.enroll data/registry.json
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple
import cv2
import numpy as np

from .config import CheckpointConfig
from .recognize.extractor import AsyncFaceExtractor
from .recognize.types import RegistryEntry

logger = logging.getLogger(__name__)

ImageReader = Callable[[str], Optional[np.ndarray]]


class RegistryError(ValueError):
     """Registry file is not a list of {id, name, image} objects."""


# -------------------------
# Registry file
# -------------------------

def parse_registry(data: object, base_dir: Path = Path(".")) -> List[RegistryEntry]:
     if not isinstance(data, list):
          raise RegistryError("registry must be a JSON list")

     entries: List[RegistryEntry] = []
     seen_ids = set()
     for i, item in enumerate(data):
          if not isinstance(item, dict):
               raise RegistryError(f"entry {i} is not an object")
          try:
               entry_id = int(item["id"])
               name = str(item["name"])
               image = str(item["image"])
          except (KeyError, TypeError, ValueError) as e:
               raise RegistryError(f"entry {i} is malformed: {e}") from e
          if entry_id in seen_ids:
               raise RegistryError(f"duplicate id {entry_id}")
          seen_ids.add(entry_id)

          image_path = Path(image)
          if not image_path.is_absolute():
               image_path = base_dir / image_path
          entries.append(RegistryEntry(id=entry_id, name=name, image=str(image_path)))
     return entries

def load_registry_file(path: Path) -> List[RegistryEntry]:
     path = Path(path)
     if not path.exists():
          logger.warning("Registry file %s not found, starting with an empty registry", path)
          return []
     try:
          data = json.loads(path.read_text(encoding="utf-8"))
     except json.JSONDecodeError as e:
          raise RegistryError(f"{path}: {e}") from e
     return parse_registry(data, base_dir=path.parent)


# -------------------------
# Enrollment
# -------------------------

def read_image(path: str) -> Optional[np.ndarray]:
     return cv2.imread(path)

async def enroll_entry(entry: RegistryEntry, extractor: AsyncFaceExtractor, reader: ImageReader = read_image) -> RegistryEntry:
     image = reader(entry.image)
     if image is None:
          logger.warning("Enrollment failed for %s: cannot read %s", entry.name, entry.image)
          return replace(entry, descriptor=None)
     try:
          descriptor = await extractor.enroll(image)
     except Exception as e:
          logger.warning("Enrollment failed for %s: %s", entry.name, e)
          return replace(entry, descriptor=None)
     if descriptor is None:
          logger.warning("Enrollment failed for %s: no face in %s", entry.name, entry.image)
          return replace(entry, descriptor=None)
     return replace(entry, descriptor=descriptor)

async def enroll_registry(
     entries: Sequence[RegistryEntry],
     extractor: AsyncFaceExtractor,
     reader: ImageReader = read_image,
) -> List[RegistryEntry]:
     """Enroll every entry in order; failures leave the descriptor absent."""
     enrolled = []
     for entry in entries:
          enrolled.append(await enroll_entry(entry, extractor, reader))
     ok = sum(1 for e in enrolled if e.matchable)
     logger.info("Enrolled %d of %d registry entries", ok, len(enrolled))
     return enrolled

def registry_summary(entries: Sequence[RegistryEntry]) -> List[Tuple[str, bool]]:
     return [(e.name, e.matchable) for e in entries]


# -------------------------
# CLI
# -------------------------

async def _run(cfg: CheckpointConfig) -> List[RegistryEntry]:
     extractor = AsyncFaceExtractor(
          embedder_path=cfg.embedder_path,
          landmarker_path=cfg.landmarker_path,
          timeout_s=cfg.extraction_timeout_s,
          input_size=cfg.detector_input_size,
          min_face_size=cfg.min_face_size,
     )
     await extractor.load()
     try:
          return await enroll_registry(load_registry_file(cfg.registry_path), extractor)
     finally:
          extractor.close()

def main(argv: Optional[Sequence[str]] = None):
     parser = argparse.ArgumentParser(description="Enroll the registry and report which entries loaded.")
     parser.add_argument("registry", nargs="?", type=Path, default=CheckpointConfig().registry_path)
     args = parser.parse_args(argv)

     logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
     entries = asyncio.run(_run(CheckpointConfig(registry_path=args.registry)))
     for name, loaded in registry_summary(entries):
          print(f"{name:<24} {'Loaded' if loaded else 'Failed'}")


if __name__ == "__main__":
     main()
