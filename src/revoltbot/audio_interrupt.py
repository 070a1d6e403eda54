#!/usr/bin/env python3
"""
RevoltBot interruptible audio playback

Plays synthesized speech through a sounddevice output stream that can be cut
off mid-utterance when the user starts talking over the assistant.
"""
import os
import threading
import time
from typing import Any, Dict, Optional

import numpy as np

from .logging_utils import setup_logger

logger = setup_logger("revoltbot.audio_interrupt", "logs/audio_interrupt.log")

NO_AUDIO_ENV = "REVOLTBOT_NO_AUDIO"


class InterruptibleAudioPlayer:
    """Blocking playback of float32 mono audio that another thread can interrupt"""

    def __init__(self, output_device=None, block_sec: float = 0.05):
        self.output_device = output_device  # sd device index or name
        self.block_sec = block_sec
        self.sample_rate = 22050
        self.current_stream: Optional[Any] = None
        self.is_playing = False
        self.interrupt_requested = False
        self.playback_thread: Optional[threading.Thread] = None

        self.audio_buffer = np.array([], dtype=np.float32)
        self.buffer_lock = threading.Lock()

    def play(self, audio_data: np.ndarray, sample_rate: int) -> bool:
        """
        Play audio until it finishes or is interrupted

        Args:
            audio_data: Mono audio samples
            sample_rate: Sample rate of `audio_data`

        Returns:
            bool: True if playback completed, False if interrupted
        """
        if os.environ.get(NO_AUDIO_ENV, "0") == "1":
            logger.info(f"{NO_AUDIO_ENV}=1 set; skipping audio playback")
            return True

        # A fresh utterance clears any interrupt aimed at the previous one
        self.interrupt_requested = False
        self.sample_rate = int(sample_rate)

        with self.buffer_lock:
            self.audio_buffer = np.asarray(audio_data, dtype=np.float32).reshape(-1).copy()
            self.is_playing = True

        self.playback_thread = threading.Thread(target=self._playback_worker, daemon=True)
        self.playback_thread.start()

        try:
            expected_sec = max(3.0, min(120.0, (len(audio_data) / float(self.sample_rate)) + 1.0))
        except ZeroDivisionError:
            expected_sec = 15.0

        self.playback_thread.join(timeout=expected_sec)
        if self.playback_thread.is_alive():
            logger.warning(f"Audio playback exceeded expected duration ({expected_sec:.1f}s); extending wait")
            self.playback_thread.join(timeout=min(30.0, expected_sec))

        if self.playback_thread.is_alive():
            logger.warning("Audio playback still active; forcing interruption")
            self.interrupt_requested = True
            self._stop_current_playback()

        return not self.interrupt_requested

    def _playback_worker(self):
        """Feed the output stream until the buffer drains or an interrupt arrives"""
        try:
            import sounddevice as sd

            self.current_stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                blocksize=int(self.sample_rate * self.block_sec),
                callback=self._audio_callback,
                device=self.output_device,
            )
            with self.current_stream:
                while self.is_playing and not self.interrupt_requested:
                    time.sleep(0.01)
        except Exception as e:
            logger.error(f"Audio playback error: {e}")
            self.interrupt_requested = True
        finally:
            self.is_playing = False
            self.current_stream = None

    def _audio_callback(self, outdata: np.ndarray, frames: int, time_info, status):
        if self.interrupt_requested or not self.is_playing:
            outdata.fill(0)
            return

        with self.buffer_lock:
            if len(self.audio_buffer) == 0:
                self.is_playing = False
                outdata.fill(0)
                return

            chunk_size = min(frames, len(self.audio_buffer))
            chunk = self.audio_buffer[:chunk_size]
            self.audio_buffer = self.audio_buffer[chunk_size:]

            if len(chunk) < frames:
                padded_chunk = np.zeros(frames, dtype=np.float32)
                padded_chunk[:len(chunk)] = chunk
                chunk = padded_chunk

        outdata[:] = chunk.reshape(-1, 1)

    def interrupt_playback(self):
        """Interrupt current audio playback; a no-op when nothing is playing"""
        if not self.is_playing:
            return
        logger.info("Audio playback interruption requested")
        self.interrupt_requested = True
        self._stop_current_playback()

    def _stop_current_playback(self):
        self.is_playing = False

        stream = self.current_stream
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.error(f"Error stopping audio stream: {e}")
            finally:
                self.current_stream = None

    def get_playback_status(self) -> Dict[str, Any]:
        return {
            'is_playing': self.is_playing,
            'interrupt_requested': self.interrupt_requested,
            'buffer_size': len(self.audio_buffer),
            'sample_rate': self.sample_rate,
        }


__all__ = ["InterruptibleAudioPlayer", "NO_AUDIO_ENV"]
