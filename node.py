"""Node thread driving the distributed re-encryption protocol."""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, List

from constants import DEFAULT_GATHER_TIMEOUT, FINISHED_RUN_RETENTION, POLL_INTERVAL
from crypto_manager import CryptoManager
from data_models import (
    DistributedKeyShare,
    MessageReencrypt,
    MessageReencryptReply,
    NodeState,
    PartialShare,
    ProtocolRunState,
    ReencryptionRequest,
    RunOutcome,
)
from errors import LocalShareInconsistent, OCSError
from group import Point
from network_simulator import NetworkSimulator
from policy import RequirePayload, VerificationPolicy
from reencryption import compute_partial_share, verify_partial_share


class ReencryptionHandle:
    """根节点运行句柄 / Completion signal and result of one run, as seen by the caller.

    The first outcome wins: once the caller's wait has expired the run stays
    ``TIMED_OUT`` even if the root finishes afterwards.
    """

    def __init__(
        self,
        run_id: str,
        request: ReencryptionRequest,
        on_timeout: Callable[[str], None] | None = None,
    ) -> None:
        self.run_id = run_id
        self.request = request
        self.reencrypted = threading.Event()
        self.outcome = RunOutcome.PENDING
        self.shares: List[PartialShare] | None = None
        self.started = time.monotonic()
        self.duration: float | None = None
        self._on_timeout = on_timeout
        self._lock = threading.Lock()

    def resolve(self, outcome: RunOutcome, shares: List[PartialShare] | None) -> bool:
        with self._lock:
            if self.outcome is not RunOutcome.PENDING:
                return False
            self.outcome = outcome
            self.shares = shares
            self.duration = time.monotonic() - self.started
            self.reencrypted.set()
            return True

    def wait(self, timeout: float) -> RunOutcome:
        """Block at most ``timeout`` seconds for the run to finish."""
        if not self.reencrypted.wait(timeout):
            if self.resolve(RunOutcome.TIMED_OUT, None) and self._on_timeout is not None:
                self._on_timeout(self.run_id)
        return self.outcome


class OCSNode(threading.Thread):
    """分布式节点 / One key-holding node serving re-encryption runs asynchronously."""

    def __init__(
        self,
        node_id: int,
        network: NetworkSimulator,
        key_share: DistributedKeyShare,
        policy: VerificationPolicy | None = None,
        gather_timeout: float = DEFAULT_GATHER_TIMEOUT,
    ) -> None:
        super().__init__(daemon=True, name=f"ocs-node-{node_id}")
        self.node_id = node_id
        self.network = network
        self.topology = network.topology
        self.policy = policy if policy is not None else RequirePayload()
        self.gather_timeout = gather_timeout
        self._key_share = key_share

        # 运行状态，按run_id区分
        self.runs: Dict[str, ProtocolRunState] = {}
        # 已结束的运行只保留一段时间，用于忽略重复请求
        self.finished_runs: Dict[str, NodeState] = {}
        self._finished_expiry: "OrderedDict[str, float]" = OrderedDict()

        # 仅根节点使用
        self.handles: Dict[str, ReencryptionHandle] = {}
        self.handles_lock = threading.Lock()

        self.stop_event = threading.Event()
        self.network.register_node(self.node_id)

    @property
    def prefix(self) -> str:
        return f"[Node {self.node_id}]"

    @property
    def is_root(self) -> bool:
        return self.topology.parent(self.node_id) is None

    def run(self) -> None:  # pragma: no cover - threaded entry point
        """节点主循环 / Serve the mailbox until stopped."""
        try:
            while not self.stop_event.is_set():
                if self.network.is_paused(self.node_id):
                    self.stop_event.wait(POLL_INTERVAL)
                    continue
                try:
                    message = self.network.receive(self.node_id, timeout=POLL_INTERVAL)
                except (OCSError, ValueError, KeyError) as exc:
                    print(f"{self.prefix} ✗ Dropped malformed message: {exc}")
                    message = None
                if message is not None:
                    self.process_message(*message)
                self.check_deadlines()
        except Exception as exc:
            print(f"{self.prefix} Error: {exc}")
            import traceback

            traceback.print_exc()

    def stop(self) -> None:
        self.stop_event.set()

    def start_run(self, request: ReencryptionRequest) -> ReencryptionHandle:
        """发起一次重加密 / Start a run rooted at this node and return its handle.

        Raises ``InvalidPoint`` when ``U`` or ``Xc`` is not a subgroup point.
        """
        if not self.is_root:
            raise ValueError(f"node {self.node_id} is not the root of the communication tree")
        Point.from_bytes(request.commit.to_bytes())
        Point.from_bytes(request.reader_public.to_bytes())

        run_id = uuid.uuid4().hex
        handle = ReencryptionHandle(run_id, request, on_timeout=self.forget_handle)
        with self.handles_lock:
            self.handles[run_id] = handle
        print(f"{self.prefix} Starting run {run_id[:8]} (threshold {request.threshold})")
        self.network.send(self.node_id, CryptoManager.MSG_REENCRYPT, MessageReencrypt(run_id, request, self.gather_timeout))
        return handle

    def forget_handle(self, run_id: str) -> None:
        """调用方已放弃等待 / Drop the handle of a run the caller stopped waiting for."""
        with self.handles_lock:
            self.handles.pop(run_id, None)

    def process_message(self, msg_type: str, message: object) -> None:
        try:
            if msg_type == CryptoManager.MSG_REENCRYPT:
                self.handle_reencrypt(message)
            elif msg_type == CryptoManager.MSG_REPLY:
                self.handle_reply(message)
            else:
                print(f"{self.prefix} ⚠️  Unknown message type {msg_type!r}")
        except OCSError as exc:
            print(f"{self.prefix} ✗ Failed to handle {msg_type} message: {exc}")

    def handle_reencrypt(self, message: MessageReencrypt) -> None:
        """处理重加密请求 / Evaluate locally, then relay the request to the children."""
        run_id = message.run_id
        if run_id in self.runs or run_id in self.finished_runs:
            print(f"{self.prefix} Ignoring duplicate request for run {run_id[:8]}")
            return

        state = ProtocolRunState(
            run_id=run_id,
            request=message.request,
            parent=self.topology.parent(self.node_id),
            pending_children=set(),
            deadline=time.monotonic() + message.budget,
        )
        self.runs[run_id] = state
        self.evaluate_locally(state)

        children = self.topology.children_of(self.node_id)
        if children:
            # 子树高度为h时，子节点获得 h/(h+1) 的时间预算
            height = self.topology.subtree_height(self.node_id)
            child_budget = message.budget * height / (height + 1)
            relay = MessageReencrypt(run_id, message.request, child_budget)
            reached = self.network.send_to_children(self.node_id, CryptoManager.MSG_REENCRYPT, relay)
            state.pending_children = set(reached)
            unreachable = sorted(set(children) - state.pending_children)
            if unreachable:
                print(f"{self.prefix} Children {unreachable} unreachable for run {run_id[:8]}")

        if not state.pending_children:
            self.finish_run(state)

    def authorized(self, request: ReencryptionRequest) -> bool:
        if request.verification_payload is None:
            return False
        try:
            return bool(self.policy.verify(request))
        except Exception as exc:
            # 策略异常视为拒绝
            print(f"{self.prefix} ⚠️  Verification policy raised {type(exc).__name__}: {exc}")
            return False

    def evaluate_locally(self, state: ProtocolRunState) -> None:
        """本地验证并计算部分份额 / Apply the policy and contribute at most once."""
        state.state = NodeState.AWAITING_LOCAL_VERIFICATION
        state.responders.add(self.node_id)
        request = state.request

        if not self.authorized(request):
            state.state = NodeState.REFUSING
            state.refusals += 1
            print(f"{self.prefix} ✗ Refused run {state.run_id[:8]}: verification failed")
            return

        try:
            share = compute_partial_share(self._key_share, request)
        except LocalShareInconsistent as exc:
            # 本地故障：不贡献份额，但不影响其他节点
            print(f"{self.prefix} ⚠️  Not contributing to run {state.run_id[:8]}: {exc}")
            return

        state.local_share = share
        state.contributed = True
        state.collected[share.index] = share
        state.state = NodeState.CONTRIBUTING
        print(f"{self.prefix} ✓ Contributed partial share {share.index} to run {state.run_id[:8]}")

    def handle_reply(self, reply: MessageReencryptReply) -> None:
        """合并子树回复 / Merge a child's subtree reply into the run."""
        state = self.runs.get(reply.run_id)
        if state is None:
            print(f"{self.prefix} Ignoring late reply from Node {reply.sender_id} for run {reply.run_id[:8]}")
            return
        if reply.sender_id not in state.pending_children:
            print(f"{self.prefix} Ignoring unexpected reply from Node {reply.sender_id} for run {reply.run_id[:8]}")
            return

        state.pending_children.discard(reply.sender_id)
        for share in reply.shares:
            if share.index in state.collected:
                continue
            if state.parent is None and not verify_partial_share(share, state.request):
                print(f"{self.prefix} ✗ Dropped partial share {share.index} with an invalid proof")
                continue
            state.collected[share.index] = share
        state.refusals += reply.refusals
        state.responders.update(reply.responders)

        if not state.pending_children:
            self.finish_run(state)

    def check_deadlines(self) -> None:
        now = time.monotonic()
        for state in list(self.runs.values()):
            if now >= state.deadline:
                print(
                    f"{self.prefix} Stopped waiting for {sorted(state.pending_children)} in run {state.run_id[:8]}"
                )
                self.finish_run(state)

        while self._finished_expiry:
            run_id, expiry = next(iter(self._finished_expiry.items()))
            if expiry > now:
                break
            del self._finished_expiry[run_id]
            self.finished_runs.pop(run_id, None)

    def remember_finished(self, state: ProtocolRunState) -> None:
        self.finished_runs[state.run_id] = state.state
        self._finished_expiry[state.run_id] = time.monotonic() + FINISHED_RUN_RETENTION * self.gather_timeout

    def finish_run(self, state: ProtocolRunState) -> None:
        """向上转发或在根节点结束 / Forward the subtree result, or conclude at the root.

        At the root the run completes when any share was gathered. Without
        shares it is refused only if some node refused; otherwise nothing
        answered in time and it times out.
        """
        self.runs.pop(state.run_id, None)
        state.state = NodeState.FORWARDING
        shares = list(state.collected.values())

        if state.parent is not None:
            reply = MessageReencryptReply(
                run_id=state.run_id,
                sender_id=self.node_id,
                shares=shares,
                refusals=state.refusals,
                responders=sorted(state.responders),
            )
            self.network.send_to_parent(self.node_id, CryptoManager.MSG_REPLY, reply)
            self.remember_finished(state)
            return

        if shares:
            state.outcome = RunOutcome.COMPLETED
            state.state = NodeState.ROOT_COMPLETED
        elif state.refusals:
            state.outcome = RunOutcome.REFUSED
            state.state = NodeState.ROOT_REFUSED
        else:
            state.outcome = RunOutcome.TIMED_OUT
            state.state = NodeState.ROOT_TIMED_OUT

        with self.handles_lock:
            handle = self.handles.pop(state.run_id, None)
        if handle is None or not handle.resolve(state.outcome, shares or None):
            state.outcome = RunOutcome.TIMED_OUT
            state.state = NodeState.ROOT_TIMED_OUT
            print(f"{self.prefix} Run {state.run_id[:8]} finished after the caller gave up")
        else:
            print(
                f"{self.prefix} Run {state.run_id[:8]} {state.outcome.value}: "
                f"{len(shares)} shares, {state.refusals} refusals, {len(state.responders)} responders"
            )
        self.remember_finished(state)
