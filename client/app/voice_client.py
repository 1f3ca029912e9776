"""
Voice client composition root.

Responsibilities:
- Build one ConnectionSession and the capture/playback controllers bound
  to it
- Expose the narrow surface a UI layer needs: connect/disconnect, send,
  capture toggling, status and activity views, subscriptions
- Persist last-used devices on explicit device selection

Non-responsibilities:
- No rendering, no settings forms
- No interpretation of backend text frames (forwarded via on_message)
"""

from __future__ import annotations

from config import AppConfig
from audio.capture import AudioCaptureController
from audio.devices import AudioSink, DeviceId, DeviceInfo, DeviceProvider, SoundDeviceProvider
from audio.playback import AudioPlaybackQueue
from observability.logger import log_event
from persistence.settings_store import SettingsError, SettingsStore
from session.channel import Listener, Subscription
from session.connection import ConnectionSession, Connector
from session.connection_status import ConnectionStatus


class VoiceClient:
    """
    One connection + one microphone pipeline + one speaker queue.

    Collaborators are injectable so tests run without network or audio
    hardware.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        connector: Connector | None = None,
        devices: DeviceProvider | None = None,
        sink: AudioSink | None = None,
        settings_store: SettingsStore | None = None,
    ) -> None:
        self.config = config
        self.settings_store = settings_store or SettingsStore(config.settings_path)
        self.devices: DeviceProvider = devices or SoundDeviceProvider()

        self.session = ConnectionSession(config, connector=connector)
        self.capture = AudioCaptureController(
            self.session,
            config=config,
            devices=self.devices,
            settings_store=self.settings_store,
        )
        self.playback = AudioPlaybackQueue(
            self.session,
            sink=sink,
            output_device_id=self._remembered_output(),
        )

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> None:
        self.playback.attach()
        self.session.connect()

    async def disconnect(self) -> None:
        """Stop capture and playback, then close the session for good."""
        await self.capture.stop(reason="client_disconnect")
        await self.playback.detach()
        await self.session.disconnect()

    async def send(self, message: str | bytes) -> None:
        await self.session.send(message)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def start_capture(self, device_id: DeviceId = None) -> None:
        """
        Start the microphone.

        An explicit device_id is remembered as the default for later runs.
        """
        await self.capture.start(device_id)
        if device_id is not None:
            self._remember(input_device_id=device_id)

    async def stop_capture(self) -> None:
        await self.capture.stop()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self.session.status

    @property
    def is_playing(self) -> bool:
        return self.playback.is_playing

    @property
    def is_audio_active(self) -> bool:
        return self.capture.is_audio_active

    @property
    def is_capturing(self) -> bool:
        return self.capture.is_capturing

    def list_input_devices(self) -> list[DeviceInfo]:
        return self.devices.list_input_devices()

    def list_output_devices(self) -> list[DeviceInfo]:
        return self.devices.list_output_devices()

    def set_output_device(self, device_id: DeviceId) -> None:
        self.playback.output_device_id = device_id
        self._remember(output_device_id=device_id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_status(self, listener: Listener) -> Subscription:
        return self.session.add_status_listener(listener)

    def on_message(self, listener: Listener) -> Subscription:
        return self.session.add_message_listener(listener)

    def on_activity(self, listener: Listener) -> Subscription:
        """listener(ActivityState) on every voice activity transition."""
        return self.capture.activity_channel.subscribe(listener)

    def on_playing(self, listener: Listener) -> Subscription:
        return self.playback.playing_channel.subscribe(listener)

    def on_capture_auto_stop(self, listener: Listener) -> Subscription:
        return self.capture.auto_stop_channel.subscribe(listener)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _remembered_output(self) -> DeviceId:
        try:
            return self.settings_store.load().output_device_id
        except SettingsError as e:
            log_event({
                "event_type": "SETTINGS_UNAVAILABLE",
                "client_id": self.config.client_id,
                "error": str(e),
            })
            return None

    def _remember(self, **changes: object) -> None:
        try:
            self.settings_store.update(**changes)
        except (SettingsError, OSError) as e:
            log_event({
                "event_type": "SETTINGS_SAVE_FAILED",
                "client_id": self.config.client_id,
                "error": str(e),
            })
