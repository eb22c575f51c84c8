# 成绩计算编排服务
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional, Union, Callable

from .. import config
from ..database.cache import ResultSetCache
from ..database.enums import Granularity, CalculationPhase
from .exceptions import CalculationInProgressError, InvalidTransitionError, ServerError
from .granularity import GranularityAdapter, PeriodKey, CalculationStep
from .notifications import NotificationChannel

logger = logging.getLogger(__name__)


# 计算状态
@dataclass(frozen=True)
class Idle:
    phase = CalculationPhase.IDLE


@dataclass(frozen=True)
class Running:
    step: int
    phase = CalculationPhase.RUNNING


@dataclass(frozen=True)
class Complete:
    phase = CalculationPhase.COMPLETE


@dataclass(frozen=True)
class Failed:
    step: int
    message: str
    step_scoped: bool = True
    phase = CalculationPhase.FAILED


CalculationState = Union[Idle, Running, Complete, Failed]


# 状态事件
@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class StepStarted:
    step: int


@dataclass(frozen=True)
class StepFailed:
    message: str


@dataclass(frozen=True)
class RefreshFailed:
    message: str


@dataclass(frozen=True)
class Finish:
    pass


@dataclass(frozen=True)
class Reset:
    pass


CalculationEvent = Union[Start, StepStarted, StepFailed, RefreshFailed, Finish, Reset]


def reduce_calculation_state(state: CalculationState, event: CalculationEvent) -> CalculationState:
    """计算状态机唯一的状态转换函数"""
    if isinstance(event, Start):
        if isinstance(state, Running):
            raise InvalidTransitionError("计算正在进行中, 不能重复启动")
        return Running(step=1)

    if isinstance(event, StepStarted):
        if not isinstance(state, Running) or event.step != state.step + 1:
            raise InvalidTransitionError(f"无法从 {state} 进入第 {event.step} 步")
        return Running(step=event.step)

    if isinstance(event, StepFailed):
        if not isinstance(state, Running):
            raise InvalidTransitionError(f"无法从 {state} 进入失败状态")
        return Failed(step=state.step, message=event.message, step_scoped=True)

    if isinstance(event, RefreshFailed):
        if not isinstance(state, Running):
            raise InvalidTransitionError(f"无法从 {state} 进入失败状态")
        return Failed(step=state.step, message=event.message, step_scoped=False)

    if isinstance(event, Finish):
        if not isinstance(state, Running):
            raise InvalidTransitionError(f"无法从 {state} 完成计算")
        return Complete()

    if isinstance(event, Reset):
        if isinstance(state, Running):
            raise InvalidTransitionError("计算进行中不能关闭")
        return Idle()

    raise InvalidTransitionError(f"未知事件: {event}")


@dataclass
class CalculationJob:
    """计算任务(仅存在于内存)"""
    key: PeriodKey
    total_steps: int
    step_labels: List[str]
    state: CalculationState = field(default_factory=Idle)
    started_at: Optional[datetime] = None
    completed_at: Optional[float] = None

    @property
    def phase(self) -> CalculationPhase:
        return self.state.phase

    @property
    def step(self) -> int:
        if isinstance(self.state, (Running, Failed)):
            return self.state.step
        if isinstance(self.state, Complete):
            return self.total_steps
        return 0

    @property
    def error(self) -> Optional[str]:
        return self.state.message if isinstance(self.state, Failed) else None

    @property
    def progress_percentage(self) -> float:
        """进度百分比, 完成标签计为最后一格"""
        if isinstance(self.state, Complete):
            return 100.0
        return round(self.step / (self.total_steps + 1) * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "granularity": self.key.granularity.value,
            "period_id": self.key.period_id,
            "class_id": self.key.class_id,
            "phase": self.phase.value,
            "step": self.step,
            "total_steps": self.total_steps,
            "step_labels": self.step_labels,
            "progress": self.progress_percentage,
            "error": self.error,
            "step_scoped_failure": self.state.step_scoped if isinstance(self.state, Failed) else None,
            "can_retry": isinstance(self.state, Failed),
            "can_dismiss": not isinstance(self.state, Running),
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


class CalculationOrchestrator:
    """成绩计算编排器

    按顺序执行某时段所需的远程计算步骤, 所有步骤成功后等待两个结果视图刷新完成
    才进入完成状态。每个 (粒度, 时段, 班级) 同时只允许一个任务运行。
    """

    def __init__(
        self,
        adapters: Dict[Granularity, GranularityAdapter],
        cache: ResultSetCache,
        notifier: NotificationChannel,
        display_delay: float = config.CALCULATION_DISPLAY_DELAY,
        clock: Callable[[], float] = time.monotonic
    ):
        self.adapters = adapters
        self.cache = cache
        self.notifier = notifier
        self.display_delay = display_delay
        self._clock = clock
        self._jobs: Dict[PeriodKey, CalculationJob] = {}

    async def run(self, key: PeriodKey, page_params: Optional[Dict[str, Any]] = None) -> CalculationJob:
        """执行计算任务"""
        adapter = self._get_adapter(key)
        job = self.get_job(key)
        if job and isinstance(job.state, Running):
            raise CalculationInProgressError(f"Calculation already running for {key}")

        steps = adapter.calculation_steps
        if job is None:
            job = CalculationJob(key=key, total_steps=len(steps), step_labels=[s.label for s in steps])
            self._jobs[key] = job

        job.started_at = datetime.now()
        job.completed_at = None
        self._dispatch(job, Start())

        for index, step in enumerate(steps, start=1):
            if index > 1:
                self._dispatch(job, StepStarted(index))
            try:
                await adapter.run_step(step, key.period_id, key.class_id)
            except Exception as e:
                message = self._error_message(e, step)
                self._dispatch(job, StepFailed(message))
                self.notifier.error(message, scope=f"calculation:{key}")
                return job

        try:
            await self.cache.refresh(adapter, key, **(page_params or {}))
        except Exception as e:
            message = self._error_message(e)
            self._dispatch(job, RefreshFailed(message))
            self.notifier.error(message, scope=f"calculation:{key}")
            return job

        self._dispatch(job, Finish())
        job.completed_at = self._clock()
        self.notifier.success("Results calculated successfully", scope=f"calculation:{key}")
        return job

    async def retry(self, key: PeriodKey, page_params: Optional[Dict[str, Any]] = None) -> CalculationJob:
        """失败后手动重试, 从第一步重新开始"""
        job = self.get_job(key)
        if job is None or not isinstance(job.state, Failed):
            raise InvalidTransitionError(f"No failed calculation to retry for {key}")
        logger.info(f"Retrying calculation for {key} after failure at step {job.step}")
        return await self.run(key, page_params)

    def dismiss(self, key: PeriodKey) -> None:
        """关闭进度, 运行中不允许"""
        job = self._jobs.get(key)
        if job is None:
            return
        if isinstance(job.state, Running):
            raise CalculationInProgressError(f"Cannot dismiss running calculation for {key}")
        self._dispatch(job, Reset())
        del self._jobs[key]

    def get_job(self, key: PeriodKey) -> Optional[CalculationJob]:
        job = self._jobs.get(key)
        if job is not None and self._display_expired(job):
            self._dispatch(job, Reset())
            del self._jobs[key]
            return None
        return job

    def get_state(self, key: PeriodKey) -> CalculationState:
        job = self.get_job(key)
        return job.state if job else Idle()

    def is_running(self, key: PeriodKey) -> bool:
        return isinstance(self.get_state(key), Running)

    def progress_percentage(self, job: CalculationJob) -> float:
        return job.progress_percentage

    def describe(self, key: PeriodKey) -> Dict[str, Any]:
        """任务状态描述, 无任务时返回空闲状态"""
        job = self.get_job(key)
        if job is None:
            adapter = self._get_adapter(key)
            steps = adapter.calculation_steps
            job = CalculationJob(key=key, total_steps=len(steps), step_labels=[s.label for s in steps])
        return job.to_dict()

    # 私有辅助方法
    def _get_adapter(self, key: PeriodKey) -> GranularityAdapter:
        if key.granularity not in self.adapters:
            raise ValueError(f"未找到粒度适配器: {key.granularity}")
        return self.adapters[key.granularity]

    def _dispatch(self, job: CalculationJob, event: CalculationEvent) -> None:
        previous = job.state
        job.state = reduce_calculation_state(job.state, event)
        logger.debug(f"Calculation {job.key}: {previous} -> {job.state}")

    def _display_expired(self, job: CalculationJob) -> bool:
        if not isinstance(job.state, Complete) or job.completed_at is None:
            return False
        return self._clock() - job.completed_at >= self.display_delay

    def _error_message(self, error: Exception, step: Optional[CalculationStep] = None) -> str:
        if isinstance(error, ServerError):
            return error.message
        if str(error):
            return str(error)
        if step:
            return f"Failed to calculate results ({step.label})"
        return "Failed to calculate results"
