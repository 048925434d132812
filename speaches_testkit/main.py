#!/usr/bin/env python3
"""
Speaches Testkit - Main Entry Point

Starts the shared speaches container for manual use, provisions the models
given on the command line and keeps running until interrupted. Test runs in
other processes find and reuse the container through its label.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from speaches_testkit.config import load_config
from speaches_testkit.descriptors import CapabilityType
from speaches_testkit.errors import SpeachesTestkitError
from speaches_testkit.lifecycle import ServiceLifecycleManager
from speaches_testkit.logger import setup_logging

logger = logging.getLogger(__name__)

_PREFIXES = {
    "stt:": CapabilityType.SPEECH_TO_TEXT,
    "tts:": CapabilityType.TEXT_TO_SPEECH,
    "embedding:": CapabilityType.EMBEDDING,
}

# Bare model arguments, by position
_POSITIONAL = (CapabilityType.SPEECH_TO_TEXT, CapabilityType.TEXT_TO_SPEECH)


def parse_model_args(args: Sequence[str]) -> Tuple[Dict[CapabilityType, str], Optional[str]]:
    """
    Parse model arguments.

    Accepts ``stt:<id>``, ``tts:<id>`` and ``embedding:<id>``. Bare ids are
    taken positionally (first STT, second TTS). A first bare argument without
    ``:`` followed by more arguments is an API key.

    Returns:
        Tuple of (capability -> model id, API key or None)
    """
    models: Dict[CapabilityType, str] = {}
    api_key: Optional[str] = None
    has_typed = False
    position = 0

    for arg in args:
        prefix = next((p for p in _PREFIXES if arg.lower().startswith(p)), None)
        if prefix is not None:
            models[_PREFIXES[prefix]] = arg[len(prefix):]
            has_typed = True
        elif position == 0 and api_key is None and not has_typed and ":" not in arg and len(args) > 1:
            api_key = arg
        elif position < len(_POSITIONAL):
            models[_POSITIONAL[position]] = arg
            position += 1
        else:
            logger.warning(
                "Unknown model argument (use 'stt:model', 'tts:model' or 'embedding:model')",
                extra={"argument": arg},
            )

    return models, api_key


def setup_signal_handlers(stop: threading.Event):
    """Setup signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info("Received shutdown signal", extra={"signal": sig})
        stop.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the standalone speaches instance."""
    parser = argparse.ArgumentParser(description="Start a shared speaches instance for tests")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: auto-detect)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level override",
    )
    parser.add_argument("--label", type=str, default=None, help="Instance label override")
    parser.add_argument("--api-key", type=str, default=None, help="API key for the service")
    parser.add_argument(
        "models",
        nargs="*",
        help="Models as stt:<id>, tts:<id>, embedding:<id> or bare ids (STT, then TTS)",
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.log_level:
        config.log.level = args.log_level

    setup_logging(config.log)

    models, positional_key = parse_model_args(args.models)
    api_key = args.api_key or positional_key
    if api_key:
        config.provisioning.api_key = api_key
    if not models:
        models = {CapabilityType.parse(k): v for k, v in config.provisioning.models.items()}

    manager = ServiceLifecycleManager(config)
    try:
        instance = manager.start_if_needed(models=models, api_key=api_key, label=args.label)
    except SpeachesTestkitError as e:
        logger.error("Failed to start speaches instance", exc_info=True, extra={"error": str(e)})
        sys.exit(1)

    print(f"Speaches container started on {instance.endpoint}")
    if api_key:
        print(f"API Key: {api_key}")
    for capability, model_id in models.items():
        print(f"{capability.name} Model: {model_id}")
    print(f"API endpoint: {instance.base_url}")
    print(f"Health check: {instance.base_url}/health")
    print(f"API docs: {instance.base_url}/docs")

    stop = threading.Event()
    setup_signal_handlers(stop)
    while not stop.wait(1.0):
        pass
    logger.info("Stopped; the container keeps running for reuse", extra={"label": instance.label})


if __name__ == "__main__":
    main()
