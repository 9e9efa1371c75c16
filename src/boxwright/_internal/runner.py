"""Create, start, stop and remove containers from built definitions."""

import logging
from typing import Iterable

from boxwright.contracts import UpOutcome, UpReport, UpStatus
from boxwright.kernel.backend import BuildBackend, RunBackend
from boxwright.kernel.cache import LABEL_MANAGER, LABEL_NAME, MANAGER
from boxwright.kernel.state import MergedConfig

from .scheduler import lookup_record

logger = logging.getLogger(__name__)


def container_labels(name: str) -> dict:
    return {LABEL_MANAGER: MANAGER, LABEL_NAME: name}


def up(
    names: Iterable[str],
    build_backend: BuildBackend,
    run_backend: RunBackend,
    replace: bool = False,
) -> UpReport:
    """Create and start one container per built definition.

    Containers that already exist are left alone unless ``replace``.
    """
    report = UpReport()
    for name in names:
        record, image = lookup_record(build_backend, name)
        if record is None or image is None:
            logger.warning("%s has no built image; run `bx build %s` first", name, name)
            report.outcomes.append(UpOutcome(name=name, status=UpStatus.NOT_BUILT))
            continue

        args = MergedConfig(ops=tuple(record.config)).to_run_args()
        status = UpStatus.CREATED
        existing = run_backend.find(name)
        if existing is not None:
            if not replace:
                logger.info("Container %s already exists", name)
                report.outcomes.append(UpOutcome(
                    name=name, status=UpStatus.EXISTS, container=existing.id,
                    image=existing.image_id,
                ))
                continue
            if existing.labels.get(LABEL_MANAGER) != MANAGER:
                logger.warning("Container %s was not created by bx; not replacing it", name)
                report.outcomes.append(UpOutcome(
                    name=name, status=UpStatus.CONFLICT, container=existing.id,
                    image=existing.image_id,
                ))
                continue
            logger.info("Replacing container %s", name)
            if existing.running:
                run_backend.stop(existing.id)
            run_backend.remove(existing.id)
            status = UpStatus.REPLACED

        container = run_backend.create(image.id, name, args, container_labels(name))
        run_backend.start(container)
        logger.info("Started %s from %s", name, image.id)
        report.outcomes.append(UpOutcome(
            name=name, status=status, container=container, image=image.id, args=args,
        ))
    return report


def down(names: Iterable[str], run_backend: RunBackend) -> UpReport:
    """Stop and remove managed containers; foreign containers are left alone."""
    report = UpReport()
    for name in names:
        existing = run_backend.find(name)
        if existing is None or existing.labels.get(LABEL_MANAGER) != MANAGER:
            report.outcomes.append(UpOutcome(name=name, status=UpStatus.ABSENT))
            continue
        if existing.running:
            run_backend.stop(existing.id)
        run_backend.remove(existing.id)
        logger.info("Removed container %s", name)
        report.outcomes.append(UpOutcome(name=name, status=UpStatus.REMOVED, container=existing.id))
    return report
