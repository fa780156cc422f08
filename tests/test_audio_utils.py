from cone_trainer.frontend.audio_utils import (
    DEFAULT_FORMAT,
    RECORDING_FORMATS,
    is_constrained_mobile,
    select_constraints,
    select_recording_format,
)


def test_first_supported_format_wins():
    supported = {"audio/mp4", "audio/webm"}
    assert select_recording_format(lambda f: f in supported) == "audio/webm"


def test_selection_is_deterministic():
    supported = {"audio/ogg;codecs=opus", "audio/wav"}
    results = {select_recording_format(lambda f: f in supported) for _ in range(5)}
    assert results == {"audio/ogg;codecs=opus"}


def test_nothing_supported_returns_default_sentinel():
    assert select_recording_format(lambda f: False) == DEFAULT_FORMAT == ""


def test_preference_order():
    assert RECORDING_FORMATS[0] == "audio/webm;codecs=opus"
    assert RECORDING_FORMATS[-1] == "audio/wav"


def test_constraints_for_constrained_mobile():
    constraints = select_constraints(True)
    assert constraints.sample_rate == 48000
    assert constraints.channel_count == 1
    assert constraints.echo_cancellation and constraints.noise_suppression and constraints.auto_gain_control


def test_constraints_for_other_devices():
    assert select_constraints(False).to_dict() == {
        "echoCancellation": True,
        "noiseSuppression": True,
        "autoGainControl": True,
        "sampleRate": 16000,
        "channelCount": 1,
    }


def test_constrained_mobile_detection():
    assert is_constrained_mobile("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)")
    assert is_constrained_mobile("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)")
    assert not is_constrained_mobile("Mozilla/5.0 (X11; Linux x86_64)")
    assert not is_constrained_mobile("")
