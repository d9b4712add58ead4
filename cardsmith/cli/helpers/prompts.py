"""Interactive collaborators for the provision command."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from cardsmith.cli.helpers.theme import Icons, get_console
from cardsmith.core.errors import OperatorCancelled
from cardsmith.models.artifact import MediumHandle
from cardsmith.models.pipeline import ProgressEvent
from cardsmith.protocols.device_protocols import (
    ConfirmationRequest,
    GuardedResource,
    MediumEnumeratorProtocol,
)


class RichConfirmationPrompt:
    """Shows the target and reads the typed confirmation token from the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or get_console(stderr=True)

    def ask(self, request: ConfirmationRequest[GuardedResource]) -> str:
        lines = [f"[highlight]{escape(request.resource.describe())}[/highlight]"]
        if request.changed:
            lines.append(
                "[warning]This device is not the one originally selected "
                "(size, model or serial changed).[/warning]"
            )
        if request.prior_contents:
            lines.append("")
            lines.append("Current contents:")
            lines.extend(f"  {Icons.BULLET} {escape(c)}" for c in request.prior_contents)
        lines.append("")
        lines.append(
            f"Everything on it will be destroyed. Type [highlight]{escape(request.token)}"
            "[/highlight] to continue, anything else aborts."
        )
        title = f"{request.action.capitalize()}?"
        if request.attempt > 1:
            title += f" (confirmation {request.attempt})"
        self.console.print(Panel("\n".join(lines), title=title, border_style="warning"))
        try:
            return self.console.input("Device path: ")
        except (KeyboardInterrupt, EOFError) as e:
            raise OperatorCancelled("Confirmation interrupted") from e


class RichRetargetPrompt:
    """After a failed write, lets the operator pick another device or give up."""

    def __init__(
        self,
        enumerator: MediumEnumeratorProtocol,
        console: Console | None = None,
    ) -> None:
        self.enumerator = enumerator
        self.console = console or get_console(stderr=True)

    def retarget(self, medium: MediumHandle, error: Exception) -> MediumHandle | None:
        self.console.print(
            f"[error]{Icons.ERROR}[/error] Writing {escape(medium.device_path)} failed: "
            f"{escape(str(error))}"
        )
        candidates = {m.device_path: m for m in self.enumerator.list_media()}
        if not candidates:
            self.console.print("No removable media found.")
            return None
        for device in candidates.values():
            self.console.print(f"  {Icons.BULLET} {escape(device.describe())}")
        try:
            answer = self.console.input("Device to use instead (empty to give up): ")
        except (KeyboardInterrupt, EOFError):
            return None
        return candidates.get(answer.strip())


class ProgressPrinter:
    """Renders pipeline events: one line per transition, a bar for byte progress."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or get_console(stderr=True)
        self._progress: Progress | None = None
        self._task: TaskID | None = None
        self._stage: str | None = None

    def __call__(self, event: ProgressEvent) -> None:
        if event.done is None:
            self._stop()
            if event.message:
                self.console.print(
                    f"[info]{Icons.ARROW}[/info] [primary]{event.state.value}[/primary] "
                    f"{escape(event.message)}"
                )
            return

        if self._progress is None or self._task is None or self._stage != event.stage:
            self._start(event.stage)
        if self._progress is not None and self._task is not None:
            self._progress.update(
                self._task, completed=event.done, total=event.total or None
            )

    def _start(self, stage: str) -> None:
        self._stop()
        self._progress = Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            transient=True,
        )
        self._progress.start()
        self._task = self._progress.add_task(stage, total=None)
        self._stage = stage

    def _stop(self) -> None:
        if self._progress is not None:
            self._progress.stop()
        self._progress = None
        self._task = None
        self._stage = None

    def close(self) -> None:
        self._stop()


__all__ = ["ProgressPrinter", "RichConfirmationPrompt", "RichRetargetPrompt"]
