"""mcp_stdio_proxy.features.bridge.process

Supervision du processus MCP enfant (stdio).

Responsabilités:
- Vérifier la configuration requise AVANT de lancer (aucun processus à moitié démarré)
- Lancer l'enfant avec stdin/stdout/stderr en pipes
- Lire stdout/stderr en continu (chunks bruts) et les publier aux abonnés
- Sérialiser les écritures sur stdin (une ligne complète à la fois)
- Observer la sortie du processus et notifier les abonnés une seule fois

Ce module ne connaît pas JSON-RPC: il transporte des octets.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Callable, Literal, Mapping, Sequence

from ...core.constants import (
    DEFAULT_SHUTDOWN_GRACE_S,
    EXIT_DRAIN_TIMEOUT_S,
    READ_CHUNK_BYTES,
)
from ...core.exceptions import SpawnError, WriteError

logger = logging.getLogger(__name__)

Channel = Literal["stdout", "stderr"]
OutputCallback = Callable[[Channel, bytes], None]
ExitCallback = Callable[[int | None], None]


def find_missing_env(env: Mapping[str, str], required: Sequence[str]) -> list[str]:
    """Retourne les variables requises absentes ou vides."""

    return [name for name in required if not (env.get(name) or "").strip()]


class ProcessSupervisor:
    """Cycle de vie d'un unique processus enfant.

    Un superviseur ne lance qu'une fois: après une sortie (crash ou arrêt), la
    session est terminée jusqu'à un redémarrage externe.
    """

    def __init__(self, *, name: str = "mcp", read_chunk_bytes: int = READ_CHUNK_BYTES) -> None:
        self._name = name
        self._read_chunk_bytes = max(1, int(read_chunk_bytes))
        self._proc: asyncio.subprocess.Process | None = None
        self._alive = False
        self._write_lock = asyncio.Lock()
        self._reader_tasks: dict[Channel, asyncio.Task[None]] = {}
        self._watch_task: asyncio.Task[None] | None = None
        self._output_callbacks: list[OutputCallback] = []
        self._exit_callbacks: list[ExitCallback] = []
        self._exit_notified = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def started(self) -> bool:
        return self._proc is not None

    def on_output(self, callback: OutputCallback) -> None:
        self._output_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        self._exit_callbacks.append(callback)

    async def spawn(
        self,
        command: str,
        args: Sequence[str],
        env: Mapping[str, str],
        *,
        required_env: Sequence[str] = (),
    ) -> None:
        """Lance le processus enfant.

        Raises:
            SpawnError: configuration requise absente (vérifiée avant le lancement)
                ou échec OS du lancement.
        """

        if self._proc is not None:
            raise SpawnError(
                f"{self._name}: processus déjà lancé",
                details={"pid": self._proc.pid},
            )

        missing = find_missing_env(env, required_env)
        if missing:
            raise SpawnError(
                f"{self._name}: variables d'environnement requises manquantes: {', '.join(missing)}",
                missing=missing,
            )

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(env),
            )
        except (OSError, ValueError) as e:
            raise SpawnError(
                f"Impossible de démarrer {command}: {e}",
                details={"command": command, "args": list(args)},
            ) from e

        assert proc.stdout is not None
        assert proc.stderr is not None

        self._proc = proc
        self._alive = True
        self._reader_tasks = {
            "stdout": asyncio.create_task(self._read_loop("stdout", proc.stdout)),
            "stderr": asyncio.create_task(self._read_loop("stderr", proc.stderr)),
        }
        self._watch_task = asyncio.create_task(self._watch(proc))

        logger.info("%s: processus démarré (pid=%s): %s %s", self._name, proc.pid, command, " ".join(args))

    async def write(self, data: bytes) -> None:
        """Écrit `data` + `\\n` sur stdin, une écriture à la fois.

        Raises:
            WriteError: processus absent/terminé ou pipe fermé.
        """

        proc = self._proc
        if proc is None or proc.stdin is None or not self._alive:
            raise WriteError(f"{self._name}: processus non disponible")

        async with self._write_lock:
            if proc.stdin.is_closing():
                raise WriteError(f"{self._name}: stdin fermé")
            try:
                proc.stdin.write(data + b"\n")
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError, OSError) as e:
                raise WriteError(f"{self._name}: écriture stdin impossible: {e}") from e

    async def terminate(
        self,
        sig: int = signal.SIGTERM,
        *,
        grace_s: float = DEFAULT_SHUTDOWN_GRACE_S,
    ) -> int | None:
        """Envoie `sig`, attend `grace_s`, puis SIGKILL. Idempotent."""

        proc = self._proc
        if proc is None:
            return None

        if proc.returncode is None:
            logger.info("%s: envoi du signal %s (pid=%s)", self._name, sig, proc.pid)
            try:
                proc.send_signal(sig)
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=grace_s)
            except asyncio.TimeoutError:
                logger.warning("%s: pas de sortie après %.1fs, SIGKILL", self._name, grace_s)
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        await self.wait()
        return proc.returncode

    async def wait(self) -> int | None:
        """Attend la fin du processus et la notification des abonnés."""

        if self._watch_task is None:
            return None
        await asyncio.shield(self._watch_task)
        return self.returncode

    async def _read_loop(self, channel: Channel, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await stream.read(self._read_chunk_bytes)
                if not chunk:
                    return
                self._emit_output(channel, chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("%s: lecture %s interrompue: %s", self._name, channel, e)

    def _emit_output(self, channel: Channel, chunk: bytes) -> None:
        for callback in self._output_callbacks:
            try:
                callback(channel, chunk)
            except Exception:
                logger.exception("%s: erreur dans le traitement de %s", self._name, channel)

    async def _watch(self, proc: asyncio.subprocess.Process) -> None:
        returncode = await proc.wait()
        self._alive = False

        # Laisse stdout/stderr se vider (EOF) avant d'échouer les requêtes en vol.
        readers = list(self._reader_tasks.values())
        if readers:
            _done, pending = await asyncio.wait(readers, timeout=EXIT_DRAIN_TIMEOUT_S)
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if returncode == 0:
            logger.info("%s: processus terminé (code %s)", self._name, returncode)
        else:
            logger.warning("%s: processus terminé (code %s)", self._name, returncode)

        self._notify_exit(returncode)

    def _notify_exit(self, returncode: int | None) -> None:
        if self._exit_notified:
            return
        self._exit_notified = True
        for callback in self._exit_callbacks:
            try:
                callback(returncode)
            except Exception:
                logger.exception("%s: erreur dans un callback de sortie", self._name)
