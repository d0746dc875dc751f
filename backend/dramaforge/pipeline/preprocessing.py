"""Preprocessing stage: expand premises and split the text into segments.

Segments exist for traceability only; script synthesis always reads the
full processed text.

Splitting rules, in order:
1. ``====FILE_START: <name>====...====FILE_END====`` markers yield one
   segment per marked region (content stripped), named after the file
2. texts shorter than the threshold yield a single "Full Text" segment
3. longer texts are cut into overlapping windows named
   ``Batch k (start-end)``
"""

import logging
import re

from dramaforge.orchestrator.cancellation import RunCancelled
from dramaforge.pipeline.base import StageContext, StageResult
from dramaforge.schemas.project import Project, Segment, new_id
from dramaforge.services.ports import ProviderError

logger = logging.getLogger(__name__)

FILE_MARKER_PATTERN = re.compile(r"====FILE_START: (.*?)====([\s\S]*?)====FILE_END====")


def split_segments(
    text: str,
    threshold: int = 20000,
    chunk_size: int = 15000,
    overlap: int = 500,
) -> list[Segment]:
    """Split text into traceability segments.

    Examples:
        >>> [s.name for s in split_segments("short story")]
        ['Full Text']
        >>> [(s.start, s.end) for s in split_segments("x" * 45000)]
        [(0, 15000), (14500, 29500), (29000, 44000), (43500, 45000)]
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    segments = [
        Segment(
            id=new_id("seg"),
            name=match.group(1),
            content=match.group(2).strip(),
            index=index,
            start=match.start(),
            end=match.end(),
        )
        for index, match in enumerate(FILE_MARKER_PATTERN.finditer(text))
    ]
    if segments:
        return segments

    if len(text) < threshold:
        return [Segment(id=new_id("seg"), name="Full Text", content=text, index=0, end=len(text))]

    step = chunk_size - overlap
    start = 0
    index = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        segments.append(
            Segment(
                id=new_id("seg"),
                name=f"Batch {index + 1} ({start}-{end})",
                content=text[start:end],
                index=index,
                start=start,
                end=end,
            )
        )
        start += step
        index += 1
    return segments


async def run_preprocessing(ctx: StageContext) -> StageResult:
    """Expand a premise (if any), optionally clean the text, then segment it."""
    project = ctx.project
    text_port = ctx.ports.text
    cfg = ctx.settings.pipeline

    try:
        if project.source_kind == "premise" and project.original_premise:
            logger.info("Project %s: expanding premise into a story", project.id)
            text = await text_port.expand(project.original_premise, project.language, token=ctx.token)
        else:
            text = project.raw_text
            if cfg.preprocess_with_llm and text.strip():
                text = await text_port.preprocess(text, token=ctx.token)
    except RunCancelled:
        return StageResult.cancelled()
    except ProviderError as exc:
        return StageResult.fatal(str(exc))

    if not text.strip():
        return StageResult.fatal("Preprocessing failed: no source text to process")

    segments = split_segments(
        text,
        threshold=cfg.segment_threshold,
        chunk_size=cfg.segment_chunk_size,
        overlap=cfg.segment_overlap,
    )
    logger.info("Project %s: %d chars split into %d segment(s)", project.id, len(text), len(segments))

    def _patch(p: Project) -> None:
        p.raw_text = text
        p.segments = segments

    return StageResult.success(_patch)
