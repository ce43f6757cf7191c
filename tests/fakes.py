"""
Test doubles for the Discord voice stack, ffmpeg and yt-dlp.
"""

import asyncio
import io
from types import SimpleNamespace

from src.database import GuildSettings
from src.music.errors import ResolutionError
from src.music.models import QueuedSong, Song
from src.music.voice import ConnectionState


def make_song(title, length=180, **kwargs):
    return Song(
        title=title,
        artist=kwargs.pop('artist', 'Artist'),
        url=kwargs.pop('url', f"https://www.youtube.com/watch?v={title}"),
        length=length,
        **kwargs
    )


def make_item(title, length=180, **kwargs):
    return QueuedSong(song=make_song(title, length, **kwargs), added_in_channel_id=1, requested_by=42)


def make_channel(channel_id=100, member_ids=(5, 6)):
    guild = SimpleNamespace(id=10, name='guild', voice_client=None)
    return SimpleNamespace(
        id=channel_id,
        name=f"voice-{channel_id}",
        guild=guild,
        members=[SimpleNamespace(id=member_id, bot=False) for member_id in member_ids]
    )


class FakeProcess:
    """Stands in for an ffmpeg subprocess.Popen"""

    def __init__(self, data=b'', returncode=0, running=False):
        self.stdout = io.BytesIO(data)
        self.returncode = returncode
        self.running = running
        self.killed = False

    def wait(self):
        return self.returncode

    def poll(self):
        return None if self.running else self.returncode

    def kill(self):
        self.killed = True
        self.running = False


class FakeTranscoder:
    def __init__(self, data=b'audio-bytes', returncode=0):
        self.data = data
        self.returncode = returncode
        self.calls = []
        self.processes = []

    def transcode(self, source, input_options=None, volume_adjustment=None):
        self.calls.append(SimpleNamespace(
            source=source,
            input_options=list(input_options or []),
            volume_adjustment=volume_adjustment
        ))
        process = FakeProcess(self.data, self.returncode)
        self.processes.append(process)
        return process


class FakeExtractor:
    def __init__(self, info=None):
        self.info = info or {
            'webpage_url': 'https://www.youtube.com/watch?v=a',
            'duration': 200,
            'is_live': False,
            'formats': [
                {'format_id': '251', 'url': 'https://cdn/251', 'acodec': 'opus', 'ext': 'webm', 'asr': 48000, 'abr': 130},
            ],
        }
        self.calls = []

    async def get_info(self, url):
        self.calls.append(url)
        return self.info


class FakeResolver:
    """Records resolve() calls; can fail or block per song title"""

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.blocking = set()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False

    async def resolve(self, song, seek=None, to=None):
        self.calls.append(SimpleNamespace(song=song, seek=seek, to=to))
        if song.title in self.failing:
            raise ResolutionError(f"cannot resolve {song.title}")
        if song.title in self.blocking:
            self.entered.set()
            try:
                await self.release.wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        return SimpleNamespace(song=song, closed=False)


class FakeSink:
    def __init__(self, stream, volume):
        self.stream = stream
        self.volume = volume / 100
        self.cleaned_up = False

    def cleanup(self):
        self.cleaned_up = True


class FakeVoiceClient:
    def __init__(self, channel):
        self.channel = channel
        self.connected = True
        self.playing = False
        self.paused = False
        self.source = None
        self.after = None
        self.afters = []
        self.disconnected = False
        self.stop_count = 0

    def is_connected(self):
        return self.connected

    def is_playing(self):
        return self.playing

    def is_paused(self):
        return self.paused

    def play(self, source, after=None):
        self.source = source
        self.after = after
        self.afters.append(after)
        self.playing = True
        self.paused = False

    def pause(self):
        if self.playing:
            self.playing = False
            self.paused = True

    def resume(self):
        if self.paused:
            self.paused = False
            self.playing = True

    def stop(self):
        self.stop_count += 1
        after = self.after
        self.playing = False
        self.paused = False
        self.after = None
        # discord.py calls the after callback once the player thread exits
        if after is not None:
            after(None)

    def finish(self, error=None):
        """Simulates the audio source running out of data"""
        after = self.after
        self.playing = False
        self.after = None
        after(error)

    async def disconnect(self, force=False):
        self.connected = False
        self.disconnected = True


class FakeAdapter:
    def __init__(self):
        self.clients = []
        self.listeners = []
        self.watchers = []
        self.on_state = None
        self.cancelled_watchers = 0

    @property
    def voice_client(self):
        return self.clients[-1] if self.clients else None

    @property
    def listener(self):
        return self.listeners[-1] if self.listeners else None

    async def join(self, channel):
        vc = FakeVoiceClient(channel)
        self.clients.append(vc)
        return vc

    async def watch(self, vc, on_state):
        self.watchers.append(vc)
        self.on_state = on_state
        on_state(ConnectionState.READY)
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled_watchers += 1
            raise

    def create_sink(self, stream, volume):
        return FakeSink(stream, volume)

    def listen(self, vc, listener):
        self.listeners.append(listener)
        return True


class FakeSettings:
    def __init__(self, **overrides):
        self.settings = GuildSettings(**{'empty_queue_timeout': 0, **overrides})

    async def get(self, guild_id):
        return GuildSettings(**vars(self.settings))


async def settle(player, rounds=3):
    """Lets posted callbacks reach the player and waits until they are handled"""
    for _ in range(rounds):
        await asyncio.sleep(0)
        await player.drain_events()
