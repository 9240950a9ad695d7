"""Command line interface for the freeflow dictation pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import typer

from . import __version__
from . import config as config_mod
from . import storage as storage_mod
from .config import ConfigError
from .models import Config, HistoryItem, TranscriptionJob
from .rewriter import RewriteError, Rewriter
from .storage import HistoryStore, StorageError
from .transcriber import TranscriptionError, TranscriptionService, validate_api_key
from .vocabulary import correct_transcript, merged_vocabulary_terms

app = typer.Typer(add_completion=False, help="Dictation transcription, rewriting and history.")
history_app = typer.Typer(add_completion=False, help="Inspect and prune dictation history.")
app.add_typer(history_app, name="history")

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    raw_transcript: str
    final_transcript: str
    rewrite_prompt: Optional[str]
    post_processing_status: str


def _fail(message: str) -> typer.Exit:
    typer.secho(message, fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


def _load_config() -> Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        raise _fail(str(exc)) from exc


def _open_store() -> HistoryStore:
    store = HistoryStore(storage_mod.DB_PATH)
    if not store.is_persistent:
        typer.secho(
            "History database unavailable; history is kept in memory for this run only.",
            fg=typer.colors.YELLOW,
            err=True,
        )
    return store


def _release_audio(refs: Iterable[str]) -> None:
    for ref in refs:
        try:
            Path(ref).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete audio %s: %s", ref, exc)


def _progress_printer():
    last = {"status": None}

    def report(job: TranscriptionJob) -> None:
        if job.status is not last["status"]:
            last["status"] = job.status
            typer.secho(f"[{job.status.value}]", fg=typer.colors.BRIGHT_BLACK, err=True)

    return report


async def _run_cycle(
    cfg: Config,
    audio: Path,
    context: str,
    vocabulary: str,
    rewrite: bool,
) -> CycleResult:
    service = TranscriptionService(
        cfg.transcription_api_key or "",
        base_url=cfg.transcription_base_url,
        speech_model=cfg.speech_model,
        poll_interval=cfg.poll_interval,
        timeout=cfg.api_timeout,
    )
    raw = await service.transcribe(audio, on_progress=_progress_printer())

    if rewrite and cfg.rewrite_api_key:
        rewriter = Rewriter(
            cfg.rewrite_api_key,
            base_url=cfg.rewrite_base_url,
            model=cfg.rewrite_model,
            timeout=cfg.api_timeout,
        )
        try:
            result = await rewriter.rewrite(raw, context, vocabulary)
        except RewriteError as exc:
            logger.warning("Rewrite failed, using local correction: %s", exc)
            typer.secho(f"{exc}. Falling back to local correction.", fg=typer.colors.YELLOW, err=True)
            status = f"Post-processing failed: {exc}"
        else:
            return CycleResult(raw, result.text, result.prompt_used, "Post-processing succeeded")
    else:
        status = "Post-processing skipped; local vocabulary correction"

    terms = merged_vocabulary_terms(vocabulary, context)
    return CycleResult(raw, correct_transcript(raw, terms), None, status)


def _record(cfg: Config, audio: Path, context: str, vocabulary: str, result: CycleResult) -> None:
    item = HistoryItem.create(
        result.raw_transcript,
        result.final_transcript,
        rewrite_prompt=result.rewrite_prompt,
        context_summary=context,
        post_processing_status=result.post_processing_status,
        debug_status=f"audio={audio.name}",
        custom_vocabulary=vocabulary,
    )
    store = _open_store()
    kept_audio: Optional[Path] = None
    try:
        # Audio is only kept next to a persistent store.
        if cfg.keep_audio and store.is_persistent:
            kept_audio = storage_mod.AUDIO_DIR / f"{item.id}{audio.suffix or '.wav'}"
            try:
                storage_mod.AUDIO_DIR.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(audio, kept_audio)
            except OSError as exc:
                typer.secho(f"History not recorded: could not keep audio: {exc}", fg=typer.colors.YELLOW, err=True)
                _release_audio([str(kept_audio)])
                return
            item = replace(item, audio_file_ref=str(kept_audio))
        evicted = store.append(item, cfg.max_history)
    except StorageError as exc:
        typer.secho(f"History not recorded: {exc}", fg=typer.colors.YELLOW, err=True)
        if kept_audio is not None:
            _release_audio([str(kept_audio)])
        return
    finally:
        store.close()
    _release_audio(evicted)
    typer.secho(f"\nSaved to history with id {item.id[:8]}.", fg=typer.colors.BLUE, err=True)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Log debug details to stderr."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(f"freeflow v{__version__}")
        raise typer.Exit()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, readable=True, dir_okay=False, help="Path to the audio file."),
    context: str = typer.Option("", "--context", help="Free-text summary of where the text is going."),
    vocabulary: Optional[str] = typer.Option(
        None, "--vocabulary", help="Comma, semicolon or newline separated terms (defaults to config)."
    ),
    rewrite: bool = typer.Option(True, "--rewrite/--no-rewrite", help="Send the transcript to the rewrite backend."),
    save: bool = typer.Option(True, "--save/--no-save", help="Record the result in history."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after this many seconds."),
) -> None:
    """Transcribe an audio file, clean the text up and print it."""

    cfg = _load_config()
    if not (cfg.transcription_api_key or "").strip():
        raise _fail("No transcription API key configured. Run `freeflow login` first.")

    vocab_text = cfg.custom_vocabulary if vocabulary is None else vocabulary
    limit = timeout if timeout is not None else cfg.transcription_timeout

    async def cycle() -> CycleResult:
        return await asyncio.wait_for(_run_cycle(cfg, audio, context, vocab_text, rewrite), timeout=limit)

    try:
        result = asyncio.run(cycle())
    except asyncio.TimeoutError as exc:
        raise _fail(f"Gave up after {limit:g} seconds.") from exc
    except TranscriptionError as exc:
        raise _fail(str(exc)) from exc

    typer.echo(result.final_transcript)
    if save:
        _record(cfg, audio, context, vocab_text, result)


@app.command()
def login(
    transcription_key: Optional[str] = typer.Option(
        None, "--transcription-key", help="API key for the transcription service."
    ),
    rewrite_key: Optional[str] = typer.Option(None, "--rewrite-key", help="API key for the rewrite backend."),
    skip_check: bool = typer.Option(False, "--skip-check", help="Store the key without validating it."),
) -> None:
    """Validate and store API keys."""

    if transcription_key is None and rewrite_key is None:
        transcription_key = typer.prompt("Transcription API key", hide_input=True)

    updates: Dict[str, object] = {}
    if transcription_key is not None:
        cfg = _load_config()
        key = transcription_key.strip()
        if not skip_check and not asyncio.run(
            validate_api_key(key, base_url=cfg.transcription_base_url)
        ):
            raise _fail("The transcription service rejected this API key.")
        updates["transcription_api_key"] = key
    if rewrite_key is not None:
        updates["rewrite_api_key"] = rewrite_key.strip()

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        raise _fail(str(exc)) from exc
    typer.secho("API key stored.", fg=typer.colors.BLUE)


@app.command()
def config(
    custom_vocabulary: Optional[str] = typer.Option(None, help="Default custom vocabulary."),
    speech_model: Optional[str] = typer.Option(None, help="Speech model requested from the transcription service."),
    rewrite_model: Optional[str] = typer.Option(None, help="Chat model used for rewriting."),
    transcription_base_url: Optional[str] = typer.Option(None, help="Base URL of the transcription API."),
    rewrite_base_url: Optional[str] = typer.Option(None, help="Base URL of the rewrite API."),
    poll_interval: Optional[float] = typer.Option(None, help="Seconds between job status checks."),
    api_timeout: Optional[float] = typer.Option(None, help="HTTP client timeout (seconds)."),
    transcription_timeout: Optional[float] = typer.Option(None, help="Default limit for a whole dictation cycle."),
    max_history: Optional[int] = typer.Option(None, help="Number of history items to keep."),
    keep_audio: Optional[bool] = typer.Option(
        None, "--keep-audio/--no-keep-audio", help="Keep a copy of the audio with each history item."
    ),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "custom_vocabulary": custom_vocabulary,
            "speech_model": speech_model,
            "rewrite_model": rewrite_model,
            "transcription_base_url": transcription_base_url,
            "rewrite_base_url": rewrite_base_url,
            "poll_interval": poll_interval,
            "api_timeout": api_timeout,
            "transcription_timeout": transcription_timeout,
            "max_history": max_history,
            "keep_audio": keep_audio,
        }.items()
        if value is not None
    }

    if updates:
        try:
            config_mod.update_config(**updates)
        except ConfigError as exc:
            raise _fail(str(exc)) from exc
        typer.secho("Configuration updated.", fg=typer.colors.BLUE)

    if show or not updates:
        payload = asdict(_load_config())
        for secret in ("transcription_api_key", "rewrite_api_key"):
            if payload.get(secret):
                payload[secret] = "********"
        typer.echo(json.dumps(payload, indent=2, default=str))


def _resolve(items: List[HistoryItem], item_id: str) -> HistoryItem:
    matches = [item for item in items if item.id.startswith(item_id)]
    if not matches:
        raise _fail(f"No history item matches {item_id!r}.")
    if len(matches) > 1:
        raise _fail(f"{item_id!r} is ambiguous; use more characters of the id.")
    return matches[0]


def _preview(text: str, width: int = 50) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[: width - 1] + "…"


@history_app.command("list")
def history_list() -> None:
    """List recorded dictations, newest first."""

    store = _open_store()
    try:
        items = store.load_all()
    finally:
        store.close()
    if not items:
        typer.echo("No history yet. Use `freeflow transcribe` to create some.")
        return
    header = f"{'ID':<8}  {'Created':<16}  {'Text':<50}"
    typer.echo(header)
    typer.echo("-" * len(header))
    for item in items:
        created = item.timestamp.astimezone().strftime("%Y-%m-%d %H:%M")
        typer.echo(f"{item.id[:8]:<8}  {created:<16}  {_preview(item.final_transcript):<50}")


@history_app.command("show")
def history_show(
    item_id: str = typer.Argument(..., help="Id (or unique id prefix) of the item."),
    prompt: bool = typer.Option(False, "--prompt", help="Also print the rewrite prompt."),
) -> None:
    """Show one history item."""

    store = _open_store()
    try:
        item = _resolve(store.load_all(), item_id)
    finally:
        store.close()

    typer.secho(f"Id: {item.id}", fg=typer.colors.BLUE)
    typer.echo(f"Created: {item.timestamp.astimezone():%Y-%m-%d %H:%M:%S}")
    typer.echo(f"Post-processing: {item.post_processing_status or '-'}")
    if item.context_summary:
        typer.echo(f"Context: {item.context_summary}")
    if item.audio_file_ref:
        typer.echo(f"Audio: {item.audio_file_ref}")
    typer.echo("\nRaw transcript:\n" + item.raw_transcript)
    typer.secho("\nFinal transcript:\n" + item.final_transcript, fg=typer.colors.GREEN)
    if prompt and item.rewrite_prompt:
        typer.echo("\nPrompt:\n" + item.rewrite_prompt)


@history_app.command("delete")
def history_delete(item_id: str = typer.Argument(..., help="Id (or unique id prefix) of the item.")) -> None:
    """Delete one history item and its saved audio."""

    store = _open_store()
    try:
        item = _resolve(store.load_all(), item_id)
        audio_ref = store.delete(item.id)
    except StorageError as exc:
        raise _fail(str(exc)) from exc
    finally:
        store.close()
    _release_audio([audio_ref] if audio_ref else [])
    typer.secho(f"History item {item.id[:8]} deleted.", fg=typer.colors.BLUE)


@history_app.command("clear")
def history_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every history item and all saved audio."""

    if not yes:
        typer.confirm("Delete all dictation history?", abort=True)
    store = _open_store()
    try:
        refs = store.clear_all()
    except StorageError as exc:
        raise _fail(str(exc)) from exc
    finally:
        store.close()
    _release_audio(refs)
    typer.secho("History cleared.", fg=typer.colors.BLUE)


@history_app.command("trim")
def history_trim(max_count: int = typer.Argument(..., help="Number of newest items to keep.")) -> None:
    """Keep only the newest MAX_COUNT items."""

    store = _open_store()
    try:
        refs = store.trim(max_count)
        remaining = len(store.load_all())
    except StorageError as exc:
        raise _fail(str(exc)) from exc
    finally:
        store.close()
    _release_audio(refs)
    typer.secho(f"History trimmed to {remaining} item(s).", fg=typer.colors.BLUE)


if __name__ == "__main__":  # pragma: no cover
    app()
