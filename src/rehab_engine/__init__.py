"""rehab-engine - Pinch detection, mudra classification and guided rehab sessions."""

__version__ = "0.1.0"

from rehab_engine.errors import ConfigurationError, SessionSaveError, SessionStorageError
from rehab_engine.hands import FingerChannel, FrameInput, HandFrame, HandSide, Joint
from rehab_engine.pinch import PinchConfig, PinchDetector, PinchEvent, PinchEventType
from rehab_engine.postures import Posture, PostureClassifier, PostureConfig, PostureRule
from rehab_engine.tasks import RehabTask, TaskKind, default_tasks
from rehab_engine.records import SessionRecord, SessionRow
from rehab_engine.report import ComparisonReport, Trend, compare_sessions
from rehab_engine.session import SessionEvent, SessionEventType, SessionOrchestrator, SessionState
from rehab_engine.storage import SessionStore, export_rows
from rehab_engine.config import RehabConfig, load_config
from rehab_engine.pipeline import RehabPipeline
from rehab_engine.recorder import FramePlayer, FrameRecorder
