# pylint: disable=missing-module-docstring,missing-function-docstring
from audio.playback import SpeakerSink


class RecordingStream:
    def __init__(self) -> None:
        self.stopped = False
        self.closed = False

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


def open_sink(max_buffer_bytes: int) -> SpeakerSink:
    sink = SpeakerSink(max_buffer_bytes=max_buffer_bytes)
    sink._stream = RecordingStream()  # pylint: disable=protected-access
    return sink


def play(sink: SpeakerSink, frames: int) -> bytes:
    out = bytearray(frames * 2)
    sink._callback(out, frames, None, None)  # pylint: disable=protected-access
    return bytes(out)


def test_buffer_is_bounded_and_keeps_newest_audio() -> None:
    sink = open_sink(max_buffer_bytes=8)

    sink.write(b"\x01\x01" * 4)
    sink.write(b"\x02\x02" * 3)

    assert sink.dropped_bytes == 6
    assert play(sink, 4) == b"\x01\x01" + b"\x02\x02" * 3


def test_underrun_pads_with_silence() -> None:
    sink = open_sink(max_buffer_bytes=64)

    sink.write(b"\x07\x07")

    assert play(sink, 3) == b"\x07\x07" + b"\x00" * 4


def test_disabled_sink_drops_audio(captured_logs: list[str]) -> None:
    sink = open_sink(max_buffer_bytes=4)
    sink.write(b"\x01\x01" * 4)
    sink.set_enabled(False)
    sink.write(b"\x03\x03")

    assert play(sink, 2) == b"\x00" * 4

    sink.close()
    assert any("SPEAKER_AUDIO_DROPPED" in line for line in captured_logs)
