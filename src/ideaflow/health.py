import logging
from dataclasses import dataclass

import sounddevice as sd

from ideaflow.config import IdeaFlowConfig

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: IdeaFlowConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_api_key(config),
    ]

    passed = sum(1 for r in results if r.passed)

    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    critical_checks = {"audio_device", "api_key"}
    return any(not r.passed and r.name in critical_checks for r in results)


def _check_audio_device(config: IdeaFlowConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        device_name = config.capture_device
        if device_name:
            for dev in sd.query_devices():
                if device_name.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    return HealthCheckResult(name=name, passed=True, detail=f"Device '{device_name}' found")

        try:
            default = sd.query_devices(kind="input")
        except sd.PortAudioError:
            return HealthCheckResult(name=name, passed=False, detail="No input devices available")

        if device_name:
            detail = f"'{device_name}' not in PortAudio (will use PIPEWIRE_NODE), default input: {default['name']}"
        else:
            detail = f"Default input: {default['name']}"
        return HealthCheckResult(name=name, passed=True, detail=detail)
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_api_key(config: IdeaFlowConfig) -> HealthCheckResult:
    name = "api_key"
    if config.resolve_api_key():
        return HealthCheckResult(name=name, passed=True, detail="Gemini API key present")
    return HealthCheckResult(
        name=name,
        passed=False,
        detail="Set IDEAFLOW_API_KEY_FILE or GEMINI_API_KEY",
    )
