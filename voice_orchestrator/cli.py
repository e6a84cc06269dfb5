"""Voice Orchestrator CLI - Main entry point."""

import asyncio
import sys
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .adapters.base import InferenceBackend
from .adapters.http import OpenAICompatibleInference
from .adapters.mock import (
    MockAudioRecorder,
    MockInferenceBackend,
    MockPermissionProvider,
    MockRecognizer,
    MockSynthesisBackend,
    MockTranscriptionService,
)
from .cache import ResponseCache
from .config import SessionConfig, get_settings
from .language import LanguageProfileResolver
from .logging import configure_logging
from .models import EventType, SessionEvent, SessionStatus
from .pipeline import SessionOrchestrator

console = Console()

EVENT_STYLES = {
    EventType.STATE_CHANGED: "cyan",
    EventType.FINAL_TRANSCRIPT: "bold",
    EventType.UNIT_DISPATCHED: "green",
    EventType.REPLY_COMPLETED: "bold green",
    EventType.BARGE_IN: "yellow",
    EventType.ERROR: "red",
}


def _split_words(text: str, words_per_chunk: int) -> List[str]:
    words = text.split(" ")
    chunks = []
    for i in range(0, len(words), words_per_chunk):
        piece = " ".join(words[i:i + words_per_chunk])
        chunks.append(piece if i == 0 else " " + piece)
    return chunks


def _print_event(event: SessionEvent) -> None:
    if event.event_type == EventType.PARTIAL_TRANSCRIPT:
        return
    style = EVENT_STYLES.get(event.event_type, "white")
    if event.event_type == EventType.STATE_CHANGED:
        detail = f"{event.data['from']} → {event.data['to']}"
    else:
        detail = event.data.get("text") or event.data.get("transcript") or event.data.get("message", "")
    console.print(f"[{style}]{event.event_type.value:>18}[/{style}]  {detail}")


async def _wait_for_status(
    orchestrator: SessionOrchestrator,
    statuses: tuple,
    timeout: float,
) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while orchestrator.status not in statuses:
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


async def _simulate(
    utterance: str,
    inference: InferenceBackend,
    language: Optional[str],
    barge_in: Optional[str],
    timeout: float,
) -> SessionOrchestrator:
    settings = get_settings()
    recognizer = MockRecognizer()
    synthesis = MockSynthesisBackend(hold=barge_in is not None, duration_s=0.05)

    orchestrator = SessionOrchestrator(
        recognizer=recognizer,
        recorder=MockAudioRecorder(),
        transcription=MockTranscriptionService(),
        permissions=MockPermissionProvider(),
        inference=inference,
        synthesis=synthesis,
        cache=ResponseCache(ttl_s=settings.cache_ttl_s),
        config=SessionConfig.from_settings(settings, forced_language=language),
        settings=settings,
    )
    orchestrator.add_event_handler(_print_event)

    await orchestrator.start_listening()
    await recognizer.emit_partial(utterance)
    await recognizer.emit_final(utterance)

    if barge_in is not None:
        if await _wait_for_status(orchestrator, (SessionStatus.SPEAKING,), timeout):
            await recognizer.emit_partial(barge_in)
        await orchestrator.close()
        return orchestrator

    done = await _wait_for_status(orchestrator, (SessionStatus.IDLE, SessionStatus.ERROR), timeout)
    if not done:
        console.print("[red]✗[/red] Turn did not finish in time")
    await orchestrator.close()
    return orchestrator


@click.group()
@click.version_option(version=__version__, prog_name="voice-orchestrator")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool):
    """Voice Orchestrator CLI - Run scripted conversation turns.

    \b
    Examples:
      voice-orchestrator simulate "What is two plus two" --reply "Two plus two is four."
      voice-orchestrator languages
    """
    ctx.ensure_object(dict)
    settings = get_settings()
    if debug:
        settings = settings.model_copy(update={"log_level": "debug"})
    configure_logging(settings)
    ctx.obj["debug"] = debug


@cli.command("simulate")
@click.argument("utterance")
@click.option("--reply", "-r", default=None, help="Scripted reply streamed by the mock backend")
@click.option("--words-per-chunk", default=2, show_default=True, help="Words per streamed chunk")
@click.option("--language", "-l", default=None, help="Force a language tag (e.g. af-ZA)")
@click.option("--barge-in", default=None, help="Partial transcript to interrupt playback with")
@click.option("--use-api", is_flag=True, help="Use the configured inference API instead of a script")
@click.option("--timeout", default=30.0, show_default=True, help="Seconds to wait for the turn")
def simulate(
    utterance: str,
    reply: Optional[str],
    words_per_chunk: int,
    language: Optional[str],
    barge_in: Optional[str],
    use_api: bool,
    timeout: float,
):
    """Run one conversation turn against mock capture and playback."""
    if use_api:
        inference: InferenceBackend = OpenAICompatibleInference.from_settings()
    else:
        if not reply:
            console.print("[red]✗[/red] --reply is required unless --use-api is set")
            sys.exit(1)
        inference = MockInferenceBackend(
            chunks=_split_words(reply, max(1, words_per_chunk)),
            final_text=reply,
            chunk_delay_s=0.02,
        )

    orchestrator = asyncio.run(_simulate(utterance, inference, language, barge_in, timeout))
    snapshot = orchestrator.snapshot()

    table = Table(title="Session")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", snapshot.status.value)
    table.add_row("Language", snapshot.language_profile.tag)
    table.add_row("Transcript", snapshot.final_transcript)
    table.add_row("Reply", snapshot.final_reply or "-")
    table.add_row("Error", snapshot.error_message or "-")
    stats = orchestrator.get_statistics()
    table.add_row("First unit latency (ms)", str(stats["last_first_unit_latency_ms"]))
    console.print(table)

    if snapshot.error_message:
        sys.exit(1)


@cli.command("languages")
def languages():
    """List supported language profiles."""
    resolver = LanguageProfileResolver(get_settings())

    table = Table(title="Language Profiles")
    table.add_column("Tag", style="cyan")
    table.add_column("Language")
    table.add_column("Recognizer locale")
    table.add_column("Voice")
    table.add_column("Default")

    default_tag = resolver.default_profile.tag
    for tag, profile in resolver.profiles().items():
        table.add_row(
            tag,
            profile.display_name,
            profile.recognizer_locale,
            profile.synthesis_voice_id,
            "✓" if tag == default_tag else "",
        )
    console.print(table)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
