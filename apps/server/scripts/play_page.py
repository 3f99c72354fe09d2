"""Detect, attribute and play a single local page, printing highlights as it goes."""

import argparse
import asyncio
from dataclasses import replace

from panelvoice.core.config import settings
from panelvoice.core.errors import EventChannel
from panelvoice.core.logging import setup_logging
from panelvoice.models.entities import DialogueUnit, Timeline, VoiceConfig
from panelvoice.services.backends import init_synthesizer
from panelvoice.services.detection import decode_image
from panelvoice.services.playback import LoggingHighlighter, PlaybackOrchestrator
from panelvoice.services.tts import BROWSER_PROVIDER, TimedSpeechSynthesizer
from panelvoice.workers.tasks import events as pipeline_events
from panelvoice.workers.tasks import get_pipeline


class PrintingHighlighter(LoggingHighlighter):
    def activate(self, unit: DialogueUnit) -> None:
        voice = unit.voice_config.voice_id if unit.voice_config else "-"
        print(f"[{unit.sequence_index}] {unit.speaker} ({voice}): {unit.text}")


def _degrade(timeline: Timeline) -> Timeline:
    units = []
    for unit in timeline:
        voice = unit.voice_config or VoiceConfig(settings.default_voice_id, BROWSER_PROVIDER)
        units.append(replace(unit, voice_config=replace(voice, provider=BROWSER_PROVIDER)))
    return Timeline(units)


async def play(timeline: Timeline, events: EventChannel) -> None:
    finished = asyncio.Event()
    orchestrator = PlaybackOrchestrator(
        TimedSpeechSynthesizer(),
        highlighter=PrintingHighlighter(),
        events=events,
        on_finished=finished.set,
    )
    orchestrator.start(timeline)
    try:
        await finished.wait()
    finally:
        orchestrator.stop()


def main(image_path: str, user_id: str) -> None:
    setup_logging(settings.log_level)
    provider = init_synthesizer(settings, pipeline_events)
    timeline = get_pipeline().run(decode_image(image_path), user_id)
    print(f"Timeline: {len(timeline)} unit(s), synthesis via {provider}")
    if provider == BROWSER_PROVIDER:
        timeline = _degrade(timeline)
    asyncio.run(play(timeline, pipeline_events))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("image", nargs="?", default="samples/demo_page.png")
    parser.add_argument("--user", default="local")
    args = parser.parse_args()
    main(args.image, args.user)
