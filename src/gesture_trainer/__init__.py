"""GestureTrainer - teach a device motion gestures from accelerometer data."""

__version__ = "0.1.0"

from gesture_trainer.motion import MotionReading, Sample, Gesture, Match, CatalogFormatError
from gesture_trainer.filters import LowPassFilter, SignalConditioner
from gesture_trainer.history import HistoryBuffer, MatchTracker
from gesture_trainer.matcher import Matcher, DTWMatcher, generate_namespace
from gesture_trainer.registry import MatcherRegistry
from gesture_trainer.catalog import GestureCatalog, CatalogState, GestureNotFoundError
from gesture_trainer.protocol import SyncProtocol, HostMessage, SensorFrame, parse_frame
from gesture_trainer.scheduler import LoopScheduler, PersistenceScheduler
from gesture_trainer.store import GestureStore, StoreEvent
from gesture_trainer.config import TrainerConfig, load_config
from gesture_trainer.metrics import MetricsCollector
