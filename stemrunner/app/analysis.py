from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from pathlib import Path

from . import analysis_program
from .errors import ScriptWriteFailed
from .models import AnalysisResult
from .quoting import python_literal
from .sidechannel import read_small_text

logger = logging.getLogger(__name__)

ANALYSIS_DURATION_SEC = 60.0
SENTINEL = analysis_program.SENTINEL


@dataclass(frozen=True)
class AnalysisParams:
    input_path: str
    output_path: str
    debug_path: str
    duration: float = ANALYSIS_DURATION_SEC


def render_analysis_program(params: AnalysisParams) -> str:
    try:
        source = inspect.getsource(analysis_program).rstrip()
    except OSError as exc:
        raise ScriptWriteFailed("Could not read the analysis program source:", path=analysis_program.__file__) from exc
    entrypoint = "\n".join(
        [
            "",
            "",
            'if __name__ == "__main__":',
            "    sys.exit(",
            "        main(",
            f"            {python_literal(params.input_path)},",
            f"            {python_literal(params.output_path)},",
            f"            {python_literal(params.debug_path)},",
            f"            {float(params.duration)!r},",
            "        )",
            "    )",
        ]
    )
    return source + entrypoint + "\n"


def parse_analysis(text: str | None) -> AnalysisResult | None:
    if text is None:
        return None

    line = text.strip().splitlines()[0].strip() if text.strip() else ""
    if not line or line == SENTINEL:
        return None

    parts = line.split("|")
    if len(parts) != 3:
        return None

    bpm_raw, key, hz_raw = (part.strip() for part in parts)
    if not bpm_raw or not key or not hz_raw:
        return None

    try:
        return AnalysisResult(bpm=int(bpm_raw), key=key, tuningHz=int(hz_raw))
    except ValueError:
        return None


def read_analysis(output_path: Path, debug_path: Path | None = None) -> AnalysisResult | None:
    result = parse_analysis(read_small_text(output_path))
    if result is None and debug_path is not None:
        debug = read_small_text(debug_path)
        if debug and debug.strip():
            logger.warning("Analysis unavailable: %s", debug.strip().splitlines()[-1])
    return result
