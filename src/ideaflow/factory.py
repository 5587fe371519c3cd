import logging

from ideaflow.config import IdeaFlowConfig
from ideaflow.adapters.sounddevice_audio import SounddeviceCapture
from ideaflow.adapters.gemini_live import GeminiLiveSession
from ideaflow.domain.assembler import TranscriptAssembler, ascii_only
from ideaflow.domain.controller import SessionController
from ideaflow.domain.loudness import LoudnessGate
from ideaflow.ports.transcriber import SessionConfig

logger = logging.getLogger(__name__)


def create_capture(config: IdeaFlowConfig) -> SounddeviceCapture:
    return SounddeviceCapture(
        device=config.capture_device or None,
        sample_rate=config.sample_rate,
        frame_size=config.frame_size,
        echo_cancellation=config.echo_cancellation,
        noise_suppression=config.noise_suppression,
        auto_gain_control=config.auto_gain_control,
    )


def create_assembler(config: IdeaFlowConfig) -> TranscriptAssembler:
    return TranscriptAssembler(
        overlap_window=config.overlap_window,
        turn_mode=config.turn_mode,
        min_snippet_chars=config.min_snippet_chars,
        text_filter=ascii_only if config.ascii_only else None,
    )


def create_session_config(config: IdeaFlowConfig) -> SessionConfig:
    return SessionConfig(
        model=config.model,
        sample_rate=config.sample_rate,
        system_instruction=config.system_instruction,
    )


def create_controller(config: IdeaFlowConfig) -> SessionController:
    api_key = config.resolve_api_key()
    if not api_key:
        logger.warning("No Gemini API key configured, connections will fail")

    return SessionController(
        capture_factory=lambda: create_capture(config),
        transcriber_factory=lambda: GeminiLiveSession(api_key=api_key),
        session_config=create_session_config(config),
        assembler=create_assembler(config),
        gate=LoudnessGate(silence_threshold=config.silence_threshold),
        connect_timeout_seconds=config.connect_timeout_seconds,
        teardown_timeout_seconds=config.teardown_timeout_seconds,
    )
