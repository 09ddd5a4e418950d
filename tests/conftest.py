"""
Pytest configuration and shared fixtures for pg-cloner tests.

No test talks to a real database: every client tool invocation goes
through the FakeExecutor fixture.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from pg_cloner.domain import ConnectionProfile
from pg_cloner.events import (
    CLONE_LOG,
    CLONE_PROGRESS,
    SCHEMA_LOG,
    SCHEMA_PROGRESS,
    EventBus,
)
from pg_cloner.storage.clone.command_runners import ToolResult
from pg_cloner.storage.clone.operations import CloneTools
from pg_cloner.storage.store import MemoryHistoryStore, MemoryProfileStore


# ==============================================================================
# Profile Fixtures
# ==============================================================================


@pytest.fixture
def source_profile() -> ConnectionProfile:
    """Fixture providing the source connection profile ("A")."""
    return ConnectionProfile(
        id="profile-a",
        name="Production",
        host="prod.db.local",
        port=5432,
        database="app",
        user="app_user",
        password="s3cret",
        ssl=True,
    )


@pytest.fixture
def destination_profile() -> ConnectionProfile:
    """Fixture providing the destination connection profile ("B")."""
    return ConnectionProfile(
        id="profile-b",
        name="Staging",
        host="staging.db.local",
        port=5433,
        database="app_staging",
        user="staging_user",
        password="hunter2",
        ssl=False,
    )


@pytest.fixture
def profile_store(source_profile, destination_profile) -> MemoryProfileStore:
    return MemoryProfileStore([source_profile, destination_profile])


@pytest.fixture
def history_store() -> MemoryHistoryStore:
    return MemoryHistoryStore(limit=50)


@pytest.fixture
def sample_profile_data() -> Dict[str, Any]:
    """Persisted form of a profile as stored in the data file."""
    return {
        "id": "profile-a",
        "name": "Production",
        "host": "prod.db.local",
        "port": 5432,
        "database": "app",
        "user": "app_user",
        "password": "s3cret",
        "ssl": True,
        "tagId": "tag-1",
        "createdAt": "2024-01-15T10:30:00Z",
        "updatedAt": "2024-02-01T08:00:00+00:00",
    }


@pytest.fixture
def data_file(tmp_path, sample_profile_data) -> Path:
    """A data file holding one profile and no history."""
    path = tmp_path / "pg-cloner-data.json"
    path.write_text(
        json.dumps({"profiles": [sample_profile_data], "history": []}),
        encoding="utf-8",
    )
    return path


# ==============================================================================
# Tool Fixtures
# ==============================================================================


@pytest.fixture
def clone_tools() -> CloneTools:
    return CloneTools(
        pg_dump="/usr/bin/pg_dump",
        psql="/usr/bin/psql",
        pg_restore="/usr/bin/pg_restore",
    )


class FakeExecutor:
    """Stand-in for run_tool/run_tool_streaming.

    Rules are matched newest first on the tool name and, optionally, an
    argument that must appear in the command. Unmatched commands succeed
    with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, ...]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self._rules: List[Tuple[str, Optional[str], ToolResult]] = []

    def respond(
        self,
        tool: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        when: Optional[str] = None,
    ) -> None:
        self._rules.insert(
            0, (tool, when, ToolResult((tool,), returncode, stdout, stderr, 0.5))
        )

    def run(self, command, env=None, input_text=None, line_callback=None) -> ToolResult:
        command = tuple(command)
        self.calls.append(command)
        self.envs.append(dict(env) if env else None)
        tool = Path(command[0]).name
        for rule_tool, when, result in self._rules:
            if rule_tool == tool and (when is None or when in command):
                return ToolResult(
                    command,
                    result.returncode,
                    result.stdout,
                    result.stderr,
                    result.elapsed_seconds,
                )
        return ToolResult(command, 0, "", "", 0.5)

    def tools_called(self) -> List[str]:
        return [Path(command[0]).name for command in self.calls]

    def calls_for(self, tool: str) -> List[Tuple[str, ...]]:
        return [command for command in self.calls if Path(command[0]).name == tool]


@pytest.fixture
def fake_executor(mocker) -> FakeExecutor:
    """Patch every place the clone pipeline and schema export run tools."""
    executor = FakeExecutor()
    executor.respond("psql", stdout=" 12\n", when="-t")
    mocker.patch("pg_cloner.storage.clone.operations.run_tool", side_effect=executor.run)
    mocker.patch(
        "pg_cloner.storage.clone.operations.run_tool_streaming",
        side_effect=executor.run,
    )
    mocker.patch(
        "pg_cloner.storage.clone.verification.run_tool", side_effect=executor.run
    )
    mocker.patch("pg_cloner.storage.schema.export.run_tool", side_effect=executor.run)
    return executor


# ==============================================================================
# Event Fixtures
# ==============================================================================


class EventRecorder:
    """Collects every event emitted on a bus, in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: List[Tuple[str, Any]] = []
        for name in (CLONE_PROGRESS, CLONE_LOG, SCHEMA_PROGRESS, SCHEMA_LOG):
            bus.subscribe(name, self._recorder(name))

    def _recorder(self, name: str):
        def _record(payload: Any) -> None:
            self.events.append((name, payload))

        return _record

    def payloads(self, name: str) -> List[Any]:
        return [payload for event, payload in self.events if event == name]

    def stages(self, name: str = CLONE_PROGRESS) -> List[Tuple[str, int]]:
        return [(progress.stage, progress.progress) for progress in self.payloads(name)]


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def event_recorder(event_bus) -> EventRecorder:
    return EventRecorder(event_bus)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def isolated_settings(mocker, tmp_path):
    """Point settings at a temporary file with default values."""
    from pg_cloner.config import settings

    settings_path = tmp_path / "settings.json"
    mocker.patch.object(settings, "SETTINGS_PATH", settings_path)
    mocker.patch.object(
        settings.settings_store, "values", dict(settings.DEFAULT_SETTINGS)
    )
    return settings_path


# ==============================================================================
# Schema Fixtures
# ==============================================================================


@pytest.fixture
def schema_dump() -> str:
    """Representative excerpt of ``pg_dump --schema-only -Fp`` output."""
    return """--
-- PostgreSQL database dump
--

SET statement_timeout = 0;
SET client_encoding = 'UTF8';
SELECT pg_catalog.set_config('search_path', '', false);

--
-- Name: order_status; Type: TYPE; Schema: public; Owner: app
--

CREATE TYPE public.order_status AS ENUM (
    'pending',
    'shipped'
);

--
-- Name: touch_updated_at(); Type: FUNCTION; Schema: public; Owner: app
--

CREATE FUNCTION public.touch_updated_at() RETURNS trigger
    LANGUAGE plpgsql
    AS $$
BEGIN
    NEW.updated_at := now();
    RETURN NEW;
END;
$$;

ALTER FUNCTION public.touch_updated_at() OWNER TO app;

CREATE TABLE public.orders (
    id integer NOT NULL,
    customer_id integer NOT NULL,
    status public.order_status DEFAULT 'pending'::public.order_status,
    updated_at timestamp with time zone
);

COMMENT ON TABLE public.orders IS 'Customer orders; one row per checkout';

CREATE SEQUENCE public.orders_id_seq
    AS integer
    START WITH 1
    INCREMENT BY 1
    NO MINVALUE
    NO MAXVALUE
    CACHE 1;

ALTER SEQUENCE public.orders_id_seq OWNED BY public.orders.id;

CREATE VIEW public.pending_orders AS
 SELECT orders.id
   FROM public.orders
  WHERE (orders.status = 'pending'::public.order_status);

ALTER TABLE ONLY public.orders ALTER COLUMN id SET DEFAULT nextval('public.orders_id_seq'::regclass);

ALTER TABLE ONLY public.orders
    ADD CONSTRAINT orders_pkey PRIMARY KEY (id);

CREATE INDEX orders_customer_idx ON public.orders USING btree (customer_id);

CREATE UNIQUE INDEX orders_id_status_idx ON public.orders USING btree (id, status);

CREATE TRIGGER orders_touch BEFORE UPDATE ON public.orders FOR EACH ROW EXECUTE FUNCTION public.touch_updated_at();

ALTER TABLE ONLY public.orders
    ADD CONSTRAINT orders_customer_fk FOREIGN KEY (customer_id) REFERENCES public.customers(id);

SELECT pg_catalog.setval('public.orders_id_seq', 1, false);

--
-- PostgreSQL database dump complete
--
"""
