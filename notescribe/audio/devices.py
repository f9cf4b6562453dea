"""Audio input devices: enumeration, virtual-driver detection and exclusive leases."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import numpy as np
import pyaudio

from ..exceptions import DeviceAcquisitionError, DeviceError

logger = logging.getLogger(__name__)

DEFAULT_FRAMES_PER_BUFFER = 4096

# Label keywords -> driver family, checked in order
VIRTUAL_DRIVER_FAMILIES = [
    (("vb-audio", "voicemeeter"), "VB-Audio Virtual Cable"),
    (("soundflower",), "Soundflower"),
    (("blackhole",), "BlackHole"),
    (("pulse", "monitor"), "PulseAudio Monitor"),
    (("stereo mix", "what u hear"), "Stereo Mix"),
]
VIRTUAL_DEVICE_KEYWORDS = (
    "vb-audio", "voicemeeter", "soundflower", "blackhole",
    "pulse", "monitor", "stereo mix", "what u hear", "virtual",
)

FrameCallback = Callable[[np.ndarray], None]
ErrorCallback = Callable[[Exception], None]


def is_virtual_device(label: str) -> bool:
    """True if the device label looks like a loopback / virtual audio driver."""
    lowered = (label or "").lower()
    return any(keyword in lowered for keyword in VIRTUAL_DEVICE_KEYWORDS)


def virtual_driver_family(label: str) -> Optional[str]:
    """Name of the virtual driver family a label belongs to, if any."""
    lowered = (label or "").lower()
    for keywords, family in VIRTUAL_DRIVER_FAMILIES:
        if any(keyword in lowered for keyword in keywords):
            return family
    return None


@dataclass(frozen=True)
class DeviceInfo:
    """An input-capable audio device."""
    index: int
    name: str
    max_input_channels: int
    default_sample_rate: int
    is_virtual: bool = False


class AudioInputDevice(ABC):
    """Push-based frame producer owned by one capture session."""

    label: str
    sample_rate: int
    channels: int

    @abstractmethod
    def open(self, frame_callback: FrameCallback, error_callback: ErrorCallback) -> None:
        """Start delivering frames. Raises DeviceAcquisitionError on failure."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Stop delivering frames to the callbacks."""
        pass

    @abstractmethod
    def release(self) -> None:
        """Close the stream and free the underlying device."""
        pass

    @abstractmethod
    def is_active(self) -> bool:
        pass


class PyAudioInputDevice(AudioInputDevice):
    """Callback-mode pyaudio input stream delivering float32 frames."""

    def __init__(
        self,
        device_index: Optional[int] = None,
        label: str = "default",
        sample_rate: int = 48000,
        channels: int = 1,
        frames_per_buffer: int = DEFAULT_FRAMES_PER_BUFFER,
        pyaudio_factory: Callable[[], pyaudio.PyAudio] = pyaudio.PyAudio,
    ):
        """Initialize a pyaudio input device.

        Args:
            device_index: pyaudio device index, None for the system default
            label: Human-readable device name, sent as deviceLabel
            sample_rate: Capture rate in Hz
            channels: Number of channels to capture
            frames_per_buffer: Samples delivered per callback
        """
        self.device_index = device_index
        self.label = label
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_buffer = frames_per_buffer
        self.pyaudio_factory = pyaudio_factory

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None
        self._frame_callback: Optional[FrameCallback] = None
        self._error_callback: Optional[ErrorCallback] = None
        self.total_frames = 0
        self.overflow_count = 0

    def open(self, frame_callback: FrameCallback, error_callback: ErrorCallback) -> None:
        if self.stream is not None:
            raise DeviceAcquisitionError(f"Device '{self.label}' is already open")

        self._frame_callback = frame_callback
        self._error_callback = error_callback
        try:
            self.pyaudio_instance = self.pyaudio_factory()
            self.stream = self.pyaudio_instance.open(
                format=pyaudio.paFloat32,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.frames_per_buffer,
                stream_callback=self._on_audio,
            )
        except Exception as e:
            self.release()
            raise DeviceAcquisitionError(f"Could not open audio device '{self.label}': {e}") from e

        logger.info(f"Audio stream opened on '{self.label}': {self.sample_rate}Hz, "
                    f"{self.channels} channel(s), {self.frames_per_buffer} samples/buffer")

    def _on_audio(self, in_data, frame_count, time_info, status_flags):
        """pyaudio stream callback; runs on the PortAudio thread."""
        if status_flags & pyaudio.paInputOverflow:
            self.overflow_count += 1
            logger.debug(f"Input overflow on '{self.label}' ({self.overflow_count} total)")
        try:
            samples = np.frombuffer(in_data, dtype=np.float32)
            if self.channels > 1:
                samples = samples.reshape(-1, self.channels)
            self.total_frames += 1
            if self._frame_callback:
                self._frame_callback(samples)
        except Exception as e:
            logger.error(f"Error handling audio frame from '{self.label}': {e}", exc_info=True)
            if self._error_callback:
                self._error_callback(DeviceError(f"Frame delivery failed on '{self.label}': {e}"))
            return (None, pyaudio.paAbort)
        return (None, pyaudio.paContinue)

    def is_active(self) -> bool:
        if self.stream is None:
            return False
        try:
            return bool(self.stream.is_active())
        except (IOError, OSError):
            return False

    def disconnect(self) -> None:
        self._frame_callback = None
        self._error_callback = None
        if self.stream is not None:
            self.stream.stop_stream()

    def release(self) -> None:
        stream, self.stream = self.stream, None
        pa, self.pyaudio_instance = self.pyaudio_instance, None
        try:
            if stream is not None:
                stream.close()
        finally:
            if pa is not None:
                pa.terminate()
        logger.debug(f"Audio device '{self.label}' released")


class DeviceLease:
    """Exclusive hold on one device, obtained from a DeviceManager."""

    def __init__(self, manager: "DeviceManager", info: DeviceInfo, device: AudioInputDevice):
        self.manager = manager
        self.info = info
        self.device = device
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        try:
            self.device.release()
        finally:
            self.manager._drop_lease(self)


class DeviceManager:
    """Enumerates input devices and hands out one lease per device at a time."""

    def __init__(self, pyaudio_factory: Callable[[], pyaudio.PyAudio] = pyaudio.PyAudio):
        self.pyaudio_factory = pyaudio_factory
        self._leases: Dict[int, DeviceLease] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _to_info(raw: dict) -> DeviceInfo:
        name = str(raw.get("name", ""))
        return DeviceInfo(
            index=int(raw.get("index", 0)),
            name=name,
            max_input_channels=int(raw.get("maxInputChannels", 0)),
            default_sample_rate=int(raw.get("defaultSampleRate", 48000)),
            is_virtual=is_virtual_device(name),
        )

    def list_input_devices(self) -> List[DeviceInfo]:
        """All devices with at least one input channel."""
        pa = self.pyaudio_factory()
        try:
            devices = []
            for i in range(pa.get_device_count()):
                raw = dict(pa.get_device_info_by_index(i))
                raw.setdefault("index", i)
                info = self._to_info(raw)
                if info.max_input_channels > 0:
                    devices.append(info)
            return devices
        finally:
            pa.terminate()

    def list_virtual_devices(self) -> List[DeviceInfo]:
        return [d for d in self.list_input_devices() if d.is_virtual]

    def detect_virtual_drivers(self) -> List[str]:
        """Distinct virtual driver families present on this machine."""
        families = []
        for device in self.list_input_devices():
            family = virtual_driver_family(device.name)
            if family and family not in families:
                families.append(family)
        return families

    def default_input_device(self) -> Optional[DeviceInfo]:
        pa = self.pyaudio_factory()
        try:
            raw = dict(pa.get_default_input_device_info())
        except (IOError, OSError):
            return None
        finally:
            pa.terminate()
        return self._to_info(raw)

    def resolve(self, device: Union[None, int, str] = None) -> Optional[DeviceInfo]:
        """Find a device by index, '#index', exact name or name substring.

        None, '' , 'default' and 'auto' select the system default input.
        """
        if device is None or (isinstance(device, str) and device.strip().lower() in ("", "default", "auto")):
            return self.default_input_device()

        candidates = self.list_input_devices()
        if isinstance(device, int) or (isinstance(device, str) and device.strip().lstrip("#").isdigit()):
            index = int(str(device).strip().lstrip("#"))
            return next((d for d in candidates if d.index == index), None)

        wanted = device.strip().lower()
        for d in candidates:
            if d.name.lower() == wanted:
                return d
        for d in candidates:
            if wanted in d.name.lower():
                return d
        return None

    def is_in_use(self, index: int) -> bool:
        with self._lock:
            return index in self._leases

    def acquire(
        self,
        device: Union[None, int, str] = None,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        frames_per_buffer: int = DEFAULT_FRAMES_PER_BUFFER,
    ) -> DeviceLease:
        """Take exclusive ownership of a device.

        Raises:
            DeviceAcquisitionError: no such device, or it is held by another lease
        """
        try:
            info = self.resolve(device)
        except Exception as e:
            raise DeviceAcquisitionError(f"Could not query audio devices: {e}") from e
        if info is None:
            raise DeviceAcquisitionError(f"Input device not found: {device if device is not None else 'default'}")

        with self._lock:
            if info.index in self._leases:
                raise DeviceAcquisitionError(f"Device '{info.name}' is already in use by another session")
            input_device = PyAudioInputDevice(
                device_index=info.index,
                label=info.name,
                sample_rate=sample_rate or info.default_sample_rate,
                channels=min(channels, info.max_input_channels) or 1,
                frames_per_buffer=frames_per_buffer,
                pyaudio_factory=self.pyaudio_factory,
            )
            lease = DeviceLease(self, info, input_device)
            self._leases[info.index] = lease

        logger.info(f"Acquired device #{info.index} '{info.name}'"
                    f"{' (virtual)' if info.is_virtual else ''}")
        return lease

    def release(self, lease: DeviceLease) -> None:
        """Give a device back; same as lease.release()."""
        lease.release()

    def _drop_lease(self, lease: DeviceLease) -> None:
        with self._lock:
            if self._leases.get(lease.info.index) is lease:
                del self._leases[lease.info.index]
        logger.info(f"Released device #{lease.info.index} '{lease.info.name}'")
