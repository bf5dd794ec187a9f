"""In-process filtering engine built on pedalboard, pyloudnorm and numpy."""

from __future__ import annotations

import logging
from typing import Generator, Iterable

from podnorm.filter_spec import FilterStageSpec, parse_filter_chain

from .base import AudioFrame, EngineError, FilterGraphError
from .stages import STAGE_TYPES, FilterStage, LoudnormStage

LOGGER = logging.getLogger("podnorm.engine")


def build_filter_graph(spec: str) -> list[FilterStage]:
    """Instantiate one stage per entry of ``spec``."""

    try:
        stage_specs = parse_filter_chain(spec)
    except ValueError as exc:
        raise FilterGraphError(f"Malformed filter chain: {exc}") from exc

    stages: list[FilterStage] = []
    loudnorm_count = 0
    for stage_spec in stage_specs:
        stages.append(_build_stage(stage_spec, loudnorm_count))
        if stage_spec.name == LoudnormStage.name:
            loudnorm_count += 1
    return stages


def _build_stage(stage_spec: FilterStageSpec, loudnorm_index: int) -> FilterStage:
    stage_type = STAGE_TYPES.get(stage_spec.name)
    if stage_type is None:
        raise FilterGraphError(f"Unknown filter '{stage_spec.name}'.")
    try:
        if stage_type is LoudnormStage:
            return LoudnormStage(stage_spec, instance_index=loudnorm_index)
        return stage_type(stage_spec)
    except ValueError as exc:
        raise FilterGraphError(f"Invalid options for '{stage_spec.name}': {exc}") from exc


def _run_through(stages: list[FilterStage], frames: list[AudioFrame]) -> list[AudioFrame]:
    for stage in stages:
        produced: list[AudioFrame] = []
        for frame in frames:
            produced.extend(stage.push(frame))
        frames = produced
        if not frames:
            break
    return frames


def _drain(stages: list[FilterStage]) -> list[AudioFrame]:
    carried: list[AudioFrame] = []
    for stage in stages:
        produced: list[AudioFrame] = []
        for frame in carried:
            produced.extend(stage.push(frame))
        produced.extend(stage.flush())
        carried = produced
    return carried


class PedalboardEngine:
    """Runs a filter chain over a frame stream, one graph per ``process`` call."""

    def process(self, spec: str, frames: Iterable[AudioFrame]) -> Generator[AudioFrame, None, None]:
        stages = build_filter_graph(spec)
        LOGGER.debug("filter_graph_built", extra={"filter_chain": spec, "stage_count": len(stages)})
        return self._stream(stages, frames)

    def _stream(self, stages: list[FilterStage], frames: Iterable[AudioFrame]) -> Generator[AudioFrame, None, None]:
        try:
            for frame in frames:
                try:
                    outputs = _run_through(stages, [frame])
                except (ValueError, RuntimeError) as exc:
                    raise EngineError(f"Filter graph failed while processing audio: {exc}") from exc
                yield from outputs

            try:
                outputs = _drain(stages)
            except (ValueError, RuntimeError) as exc:
                raise EngineError(f"Filter graph failed while flushing: {exc}") from exc
            yield from outputs
        finally:
            for stage in stages:
                stage.close()
