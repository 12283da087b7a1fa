"""
Pre-compute and store student face descriptors for descriptor matching.

This script extracts a DeepFace descriptor from every active student's
reference photo in the configured store and saves it to DESCRIPTORS_DIR.
Detection sessions using MATCHING_STRATEGY=descriptor load these instead of
embedding every photo when monitoring starts.

Usage:
    python precompute_descriptors.py [--force] [--backend firestore]

Options:
    --force           Recompute descriptors that already exist
    --backend NAME    Storage backend to read students from (default: STORAGE_BACKEND)
"""

import sys
import argparse
from classroom_monitor.config import settings
from classroom_monitor.descriptors import DescriptorStore, extract_descriptor, photo_to_array
from classroom_monitor.storage import build_store
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def precompute_descriptors(store, descriptor_store: DescriptorStore, force: bool = False, extractor=extract_descriptor):
    """Compute missing descriptors. Returns (success, skipped, failed) counts."""
    students = [s for s in store.list_students() if s.is_active]
    logger.info(f"Found {len(students)} students to process")

    success_count = 0
    skip_count = 0
    fail_count = 0

    for i, student in enumerate(students, 1):
        logger.info(f"[{i}/{len(students)}] Processing: {student.name} ({student.id})")

        if not force and descriptor_store.exists(student.id):
            logger.info("  Descriptor already exists, skipping")
            skip_count += 1
            continue

        if not student.photo_url:
            logger.warning("  No photo available")
            fail_count += 1
            continue

        try:
            descriptor = extractor(photo_to_array(student.photo_url))
        except Exception as e:
            logger.error(f"  Error: {e}")
            fail_count += 1
            continue

        if descriptor is None:
            logger.warning("  Failed to extract descriptor (no face detected)")
            fail_count += 1
        elif descriptor_store.save(student.id, descriptor):
            logger.info("  Descriptor saved")
            success_count += 1
        else:
            logger.error("  Failed to save descriptor")
            fail_count += 1

    logger.info("=" * 60)
    logger.info(f"Successfully processed: {success_count}")
    logger.info(f"Skipped (already exist): {skip_count}")
    logger.info(f"Failed: {fail_count}")
    logger.info("=" * 60)
    return success_count, skip_count, fail_count


def main():
    """Parse arguments and run pre-computation."""
    parser = argparse.ArgumentParser(
        description="Pre-compute student face descriptors for descriptor matching"
    )
    parser.add_argument('--force', action='store_true', help='Recompute existing descriptors')
    parser.add_argument('--backend', default=settings.STORAGE_BACKEND, help='Storage backend (memory or firestore)')
    args = parser.parse_args()

    try:
        store = build_store(args.backend)
    except Exception as e:
        logger.error(f"Failed to open {args.backend} storage: {e}")
        sys.exit(1)

    _, _, failed = precompute_descriptors(store, DescriptorStore(), force=args.force)
    if failed:
        sys.exit(2)

if __name__ == "__main__":
    main()
