from __future__ import annotations

import sys
import traceback

KEY_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")
MAJOR_PROFILE = (6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88)
MINOR_PROFILE = (6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17)
SENTINEL = "||"
REFERENCE_HZ = 440.0


def estimate_key(chroma_totals) -> str:
    import numpy as np

    values = np.asarray(chroma_totals, dtype=np.float64)
    major = np.asarray(MAJOR_PROFILE, dtype=np.float64)
    minor = np.asarray(MINOR_PROFILE, dtype=np.float64)

    major_scores = [float(np.corrcoef(np.roll(major, shift), values)[0, 1]) for shift in range(12)]
    minor_scores = [float(np.corrcoef(np.roll(minor, shift), values)[0, 1]) for shift in range(12)]

    if max(major_scores) > max(minor_scores):
        return KEY_NAMES[int(np.argmax(major_scores))]
    return KEY_NAMES[int(np.argmax(minor_scores))] + "m"


def tuning_to_hz(offset: float) -> int:
    return int(round(REFERENCE_HZ * (2.0 ** (offset / 12.0))))


def _patch_scipy_windows() -> None:
    import scipy.signal

    if not hasattr(scipy.signal, "hann"):
        try:
            scipy.signal.hann = scipy.signal.windows.hann
        except AttributeError:
            pass


def load_excerpt(path: str, duration: float):
    import numpy as np
    import soundfile as sf

    try:
        with sf.SoundFile(path) as handle:
            frames = min(handle.frames, int(duration * handle.samplerate))
            audio = handle.read(frames, dtype="float32", always_2d=True)
            return np.mean(audio, axis=1), int(handle.samplerate)
    except RuntimeError:
        import librosa

        audio, sample_rate = librosa.load(path, sr=None, mono=True, duration=duration)
        return audio, int(sample_rate)


def analyze(path: str, duration: float) -> str:
    _patch_scipy_windows()

    import librosa
    import numpy as np

    audio, sample_rate = load_excerpt(path, duration)
    if audio.size == 0:
        raise RuntimeError("Input audio is empty")

    tempo, _ = librosa.beat.beat_track(y=audio, sr=sample_rate)
    tempo = float(np.atleast_1d(tempo)[0])
    bpm = int(round(tempo)) if tempo else 0

    chroma = librosa.feature.chroma_cqt(y=audio, sr=sample_rate)
    key = estimate_key(np.sum(chroma, axis=1))

    offset = float(librosa.estimate_tuning(y=audio, sr=sample_rate))
    return f"{bpm}|{key}|{tuning_to_hz(offset)}"


def _append_debug(debug_path: str, message: str) -> None:
    try:
        with open(debug_path, "a", encoding="utf-8") as handle:
            handle.write(message.rstrip() + "\n")
    except OSError:
        sys.stderr.write(message)


def _write_record(output_path: str, record: str, debug_path: str) -> None:
    try:
        with open(output_path, "w", encoding="utf-8") as handle:
            handle.write(record)
    except OSError:
        _append_debug(debug_path, "[analysis] Could not write result:\n" + traceback.format_exc())


def main(input_path: str, output_path: str, debug_path: str, duration: float = 60.0) -> int:
    try:
        record = analyze(input_path, duration)
    except ImportError:
        record = SENTINEL
        _append_debug(debug_path, "[analysis] Scientific libraries missing, skipping BPM/key detection:\n" + traceback.format_exc())
    except Exception:
        record = SENTINEL
        _append_debug(debug_path, "[analysis] Analysis failed:\n" + traceback.format_exc())

    _write_record(output_path, record, debug_path)
    print(f"[analysis] Result: {record}")
    return 0
