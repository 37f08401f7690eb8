"""
Command Line Interface for the Call Translation Pipeline

This module provides a CLI for translating recordings, managing voice
profiles and simulating a translated call from sample files.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..adapters import FileAudioAdapter
from ..config import SUPPORTED_LANGUAGES, LOG_FORMAT, LOG_LEVEL, CYCLE_INTERVAL, CAPTURE_DURATION
from ..errors import PipelineError
from ..models import VoiceCharacteristics, EMOTIONS, QUALITY_TIERS
from ..pipeline import CallTranslator, create_call_translator
from ..session import SessionConfig


# Initialize rich console
console = Console()


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else getattr(logging, LOG_LEVEL.upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


def _truncate(text: str, limit: int = 100) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _translator(ctx, **kwargs) -> CallTranslator:
    factory = ctx.obj.get('translator_factory', create_call_translator)
    return factory(**kwargs)


def _check_language(code: Optional[str], role: str) -> None:
    if code and code != 'auto' and code not in SUPPORTED_LANGUAGES:
        console.print(f"[red]Error: Unsupported {role} language '{code}'[/red]")
        console.print("Supported languages:", list(SUPPORTED_LANGUAGES.keys()))
        sys.exit(1)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--log-file', type=click.Path(), help='Also write logs to this file')
@click.pass_context
def cli(ctx, verbose, log_file):
    """Real-time call translation with voice cloning"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose, log_file)


@cli.command()
def languages():
    """List supported languages."""

    console.print(Panel.fit("Supported Languages", style="bold blue"))

    table = Table()
    table.add_column("Code", style="cyan")
    table.add_column("Language", style="white")

    for code, name in SUPPORTED_LANGUAGES.items():
        table.add_row(code, name)

    console.print(table)


@cli.command()
@click.option('--load-models', is_flag=True, help='Load models before reporting')
@click.option('--no-on-device', is_flag=True, help='Use remote translation backends only')
@click.pass_context
def status(ctx, load_models, no_on_device):
    """Show backend readiness and system information."""

    async def run():
        translator = _translator(ctx, enable_on_device=not no_on_device)
        try:
            if load_models:
                await translator.initialize()
            return await translator.get_system_info()
        finally:
            await translator.shutdown()

    info_data = asyncio.run(run())

    console.print(Panel.fit("System Information", style="bold cyan"))

    backend_table = Table(title="Translation Backends")
    backend_table.add_column("Backend", style="cyan")
    backend_table.add_column("Format", style="white")
    backend_table.add_column("Status", style="white")
    for backend in info_data['backends']:
        state = "[green]ready[/green]" if backend['ready'] else "[red]not ready[/red]"
        backend_table.add_row(backend['name'], backend['response_format'], state)
    console.print(backend_table)

    voice = info_data.get('voice_cloning')
    if voice:
        voice_table = Table(title="Voice Cloning")
        voice_table.add_column("Property", style="cyan")
        voice_table.add_column("Value", style="white")
        for key, value in voice.items():
            voice_table.add_row(key.replace('_', ' ').title(), str(value))
        console.print(voice_table)


@cli.command()
@click.argument('source')
@click.option('--text', 'is_text', is_flag=True, help='Treat SOURCE as text instead of an audio file')
@click.option('--source-lang', '-s', help='Source language code (auto-detect if not specified)')
@click.option('--target-lang', '-t', default='en', help='Target language code (default: en)')
@click.option('--profile', '-p', 'profile_id', help='Voice profile to speak the translation with')
@click.option('--preserve-voice', is_flag=True, help="Clone the input speaker's voice")
@click.option('--output', '-o', type=click.Path(), help='Output audio file path')
@click.option('--no-on-device', is_flag=True, help='Use remote translation backends only')
@click.pass_context
def translate(ctx, source, is_text, source_lang, target_lang, profile_id, preserve_voice, output, no_on_device):
    """Translate an audio file (or text with --text)."""

    _check_language(target_lang, "target")
    _check_language(source_lang, "source")

    if not is_text and not Path(source).exists():
        console.print(f"[red]Error: Audio file not found: {source}[/red]")
        sys.exit(1)

    async def run():
        translator = _translator(
            ctx,
            enable_on_device=not no_on_device,
            enable_voice=bool(profile_id or preserve_voice),
            progress_callback=lambda message: console.print(f"[dim]{message}[/dim]"),
        )
        try:
            await translator.initialize()
            return await translator.translate_file(
                source,
                source_lang=source_lang,
                target_lang=target_lang,
                profile_id=profile_id,
                preserve_voice=preserve_voice,
                output_path=output,
                is_text=is_text,
            )
        finally:
            await translator.shutdown()

    console.print(Panel.fit("Call Translation", style="bold blue"))
    console.print(f"Translation: {source_lang or 'auto'} -> {target_lang}")

    result = asyncio.run(run())

    if not result['success']:
        console.print(f"\n[red]Translation failed ({result.get('stage')}): {result['error']}[/red]")
        sys.exit(1)

    table = Table(title="Translation Results")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Original Text", _truncate(result['original_text']))
    table.add_row("Translated Text", _truncate(result['translated_text']))
    table.add_row("Source Language", result['source_language'])
    table.add_row("Target Language", result['target_language'])
    table.add_row("Engine", result['engine'])
    table.add_row("Confidence", f"{result['confidence']:.2f}")
    table.add_row("Processing Time", f"{result['processing_time']:.2f} seconds")
    if result['output_audio']:
        table.add_row("Output File", result['output_audio'])
    if result['similarity'] is not None:
        table.add_row("Voice Similarity", f"{result['similarity']:.2f}")
    console.print(table)


@cli.group()
def profiles():
    """Manage voice profiles."""
    pass


@profiles.command('list')
@click.pass_context
def list_profiles(ctx):
    """List stored voice profiles."""
    translator = _translator(ctx, enable_on_device=False)

    table = Table(title="Voice Profiles")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Language", style="white")
    table.add_column("Quality", style="white")
    table.add_column("Samples", style="white")
    table.add_column("Active", style="green")

    for profile in translator.voice_service.store.list_profiles():
        table.add_row(
            profile.id, profile.name, profile.language, profile.quality,
            str(len(profile.audio_samples)), "yes" if profile.is_active else ""
        )

    console.print(table)


@profiles.command('create')
@click.argument('name')
@click.argument('samples', nargs=-1, required=True, type=click.Path(exists=True))
@click.option('--language', '-l', default='en', help='Language spoken in the samples')
@click.option('--quality', type=click.Choice(QUALITY_TIERS), default='high', help='Synthesis quality tier')
@click.option('--pitch', type=click.FloatRange(-1.0, 1.0), default=0.0, help='Pitch adjustment (-1 to 1)')
@click.option('--speed', type=click.FloatRange(0.5, 2.0), default=1.0, help='Speed factor (0.5 to 2)')
@click.option('--emotion', type=click.Choice(EMOTIONS), default='neutral', help='Emotion')
@click.option('--activate', is_flag=True, help='Make the new profile active')
@click.pass_context
def create_profile(ctx, name, samples, language, quality, pitch, speed, emotion, activate):
    """Create a voice profile from one or more samples."""

    async def run():
        translator = _translator(ctx, enable_on_device=False)
        service = translator.voice_service
        try:
            await service.initialize()
            profile = await service.create_voice_profile(
                name, list(samples),
                characteristics=VoiceCharacteristics(pitch=pitch, speed=speed, emotion=emotion),
                language=language,
                quality=quality,
            )
            if activate:
                service.store.set_active(profile.id)
            return profile
        finally:
            await translator.shutdown()

    try:
        profile = asyncio.run(run())
    except PipelineError as e:
        console.print(f"[red]Failed to create profile ({e.stage}): {e}[/red]")
        sys.exit(1)

    console.print(f"[green]Created voice profile[/green] {profile.id} ({profile.name}, {len(samples)} samples)")


@profiles.command('activate')
@click.argument('profile_id')
@click.pass_context
def activate_profile(ctx, profile_id):
    """Make a profile the active voice."""
    translator = _translator(ctx, enable_on_device=False)
    try:
        translator.voice_service.store.set_active(profile_id)
    except PipelineError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"Active voice profile: {profile_id}")


@profiles.command('delete')
@click.argument('profile_id')
@click.pass_context
def delete_profile(ctx, profile_id):
    """Delete a voice profile."""
    translator = _translator(ctx, enable_on_device=False)
    deleted = asyncio.run(translator.voice_service.store.delete(profile_id))
    if deleted:
        console.print(f"Deleted voice profile: {profile_id}")
    else:
        console.print(f"[yellow]No voice profile named {profile_id}[/yellow]")


@profiles.command('compare')
@click.argument('profile_a')
@click.argument('profile_b')
@click.pass_context
def compare_profiles(ctx, profile_a, profile_b):
    """Show the cosine similarity of two profiles."""
    translator = _translator(ctx, enable_on_device=False)
    similarity = translator.voice_service.compare_voices(profile_a, profile_b)
    console.print(f"Similarity {profile_a} / {profile_b}: {similarity:.4f}")


@cli.command('simulate-call')
@click.argument('samples', nargs=-1, required=True, type=click.Path(exists=True))
@click.option('--source-lang', '-s', help='Source language code (auto-detect if not specified)')
@click.option('--target-lang', '-t', default='en', help='Target language code')
@click.option('--cycles', type=int, default=3, help='Number of capture cycles to run')
@click.option('--interval', type=float, default=CYCLE_INTERVAL, help='Seconds between cycles')
@click.option('--capture', type=float, default=CAPTURE_DURATION, help='Seconds captured per cycle')
@click.option('--profile', '-p', 'profile_id', help='Voice profile to speak translations with')
@click.option('--preserve-voice', is_flag=True, help="Clone each speaker's voice")
@click.option('--output-dir', '-d', type=click.Path(), help='Directory for played audio')
@click.option('--no-on-device', is_flag=True, help='Use remote translation backends only')
@click.pass_context
def simulate_call(ctx, samples, source_lang, target_lang, cycles, interval, capture,
                  profile_id, preserve_voice, output_dir, no_on_device):
    """Run a translated call that replays SAMPLES as the remote speaker."""

    _check_language(target_lang, "target")
    _check_language(source_lang, "source")

    def show(output):
        result = output.result
        console.print(f"[cyan]{result.source_language}[/cyan] {_truncate(result.original_text, 60)} "
                      f"-> [green]{result.target_language}[/green] {_truncate(result.translated_text, 60)} "
                      f"[dim]({result.engine}, {result.confidence:.2f})[/dim]")

    async def run():
        translator = _translator(
            ctx,
            enable_on_device=not no_on_device,
            enable_voice=bool(profile_id or preserve_voice),
        )
        try:
            await translator.initialize()
            audio_io = FileAudioAdapter(list(samples), translator.temp_store, output_dir)
            config = SessionConfig(
                source_lang=source_lang,
                target_lang=target_lang,
                capture_duration=capture,
                cycle_interval=interval,
                preserve_voice=preserve_voice,
                profile_id=profile_id,
            )
            session = await translator.start_call("simulated-call", audio_io, config, on_result=show)
            stats = session.stats
            while (stats['captures_started'] < cycles
                   or stats['captures_started'] > stats['cycles_completed'] + stats['cycles_failed']):
                await asyncio.sleep(0.05)
            await translator.stop_call("simulated-call")
            return session.stats
        finally:
            await translator.shutdown()

    console.print(Panel.fit("Simulated Call", style="bold blue"))
    stats = asyncio.run(run())

    table = Table(title="Session Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    for key, value in stats.items():
        table.add_row(key.replace('_', ' ').title(), str(value))
    console.print(table)


def main():
    """Main CLI entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\nOperation cancelled by user")
        sys.exit(1)


if __name__ == '__main__':
    main()
