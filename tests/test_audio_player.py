import numpy as np

from revoltbot.audio_interrupt import InterruptibleAudioPlayer


def test_no_audio_env_skips_device():
    player = InterruptibleAudioPlayer()
    assert player.play(np.ones(100, dtype=np.float32), 16000) is True
    assert player.get_playback_status()["is_playing"] is False


def test_interrupt_when_idle_does_not_poison_next_play():
    player = InterruptibleAudioPlayer()
    player.interrupt_playback()
    assert player.interrupt_requested is False
    assert player.play(np.ones(10, dtype=np.float32), 16000) is True


def test_callback_feeds_buffer_and_pads_tail():
    player = InterruptibleAudioPlayer()
    player.audio_buffer = np.arange(1, 6, dtype=np.float32)
    player.is_playing = True

    out = np.zeros((4, 1), dtype=np.float32)
    player._audio_callback(out, 4, None, None)
    assert out[:, 0].tolist() == [1.0, 2.0, 3.0, 4.0]

    player._audio_callback(out, 4, None, None)
    assert out[:, 0].tolist() == [5.0, 0.0, 0.0, 0.0]

    player._audio_callback(out, 4, None, None)
    assert player.is_playing is False
    assert not out.any()


def test_callback_outputs_silence_after_interrupt():
    player = InterruptibleAudioPlayer()
    player.audio_buffer = np.ones(8, dtype=np.float32)
    player.is_playing = True

    player.interrupt_playback()
    out = np.ones((4, 1), dtype=np.float32)
    player._audio_callback(out, 4, None, None)
    assert not out.any()
    assert player.interrupt_requested is True
    assert player.get_playback_status()["is_playing"] is False
