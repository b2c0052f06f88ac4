"""
Tests for tool definitions and agent assignments.
"""
import pytest

from emmie.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from emmie.models import AgentTool, ToolDefinition
from emmie.services.tool_admin import ToolAdminService, normalize_tool_name
from emmie.tools.registry import create_default_registry

SCHEMA = {
    "name": "lookup_invoice",
    "description": "Find an invoice by number",
    "parameters": {"type": "object", "properties": {"number": {"type": "string"}}},
}


@pytest.fixture
def tools(db_session, test_settings):
    return ToolAdminService(db_session, test_settings)


@pytest.fixture
def custom_tool(tools):
    return tools.create_tool({
        "name": "Lookup Invoice",
        "display_name": "Lookup Invoice",
        "category": "finance",
        "tool_type": "function",
        "function_schema": SCHEMA,
    }, user_id="admin-1")


# ===========================
# Definition Tests
# ===========================

@pytest.mark.unit
def test_normalize_tool_name():
    assert normalize_tool_name("  Lookup   Invoice ") == "lookup_invoice"


@pytest.mark.unit
def test_create_tool_normalises_name(custom_tool):
    assert custom_tool.name == "lookup_invoice"
    assert custom_tool.is_system is False
    assert custom_tool.is_active is True
    assert custom_tool.to_openai_tool()["name"] == "lookup_invoice"


@pytest.mark.unit
def test_create_tool_validation(tools):
    with pytest.raises(ValidationError) as exc_info:
        tools.create_tool({"name": "x"})
    assert exc_info.value.message == "Missing required fields: name, display_name, category, tool_type"

    with pytest.raises(ValidationError) as exc_info:
        tools.create_tool({"name": "x", "display_name": "X", "category": "c", "tool_type": "plugin"})
    assert exc_info.value.message.startswith("Invalid tool_type")

    with pytest.raises(ValidationError) as exc_info:
        tools.create_tool({"name": "x", "display_name": "X", "category": "c", "tool_type": "function"})
    assert exc_info.value.message == "function_schema is required for function tools"


@pytest.mark.unit
def test_duplicate_tool_name_conflicts(tools, custom_tool):
    with pytest.raises(ConflictError) as exc_info:
        tools.create_tool({
            "name": "lookup invoice",
            "display_name": "Again",
            "category": "finance",
            "tool_type": "function",
            "function_schema": SCHEMA,
        })

    assert exc_info.value.status_code == 409


@pytest.mark.unit
def test_rejected_update_leaves_tool_unchanged(tools, db_session, custom_tool):
    with pytest.raises(ValidationError) as exc_info:
        tools.update_tool(custom_tool.id, {"display_name": "Broken", "function_schema": {}})
    assert exc_info.value.details["field"] == "function_schema"

    assert custom_tool.display_name == "Lookup Invoice"
    assert custom_tool.function_schema == SCHEMA
    assert custom_tool not in db_session.dirty

    updated = tools.update_tool(custom_tool.id, {"description": "Invoices by number"})
    assert updated.display_name == "Lookup Invoice"
    assert updated.description == "Invoices by number"


@pytest.mark.unit
def test_list_tools_filters(tools, custom_tool, function_tool):
    tools.update_tool(custom_tool.id, {"is_active": False})

    assert [t.name for t in tools.list_tools()] == ["get_system_info"]
    assert len(tools.list_tools(include_inactive=True)) == 2
    assert [t.name for t in tools.list_tools(category="finance", include_inactive=True)] == ["lookup_invoice"]
    assert tools.list_tools(tool_type="file_search") == []


@pytest.mark.unit
def test_system_tools_are_read_only(tools, function_tool):
    with pytest.raises(PermissionDeniedError) as exc_info:
        tools.update_tool(function_tool.id, {"display_name": "Renamed"})
    assert exc_info.value.message == "Cannot modify system tools"

    with pytest.raises(PermissionDeniedError) as exc_info:
        tools.delete_tool(function_tool.id)
    assert exc_info.value.message == "Cannot delete system tools"


@pytest.mark.unit
def test_delete_tool_removes_assignments(tools, db_session, custom_tool, agent):
    tools.assign_tool(agent.id, custom_tool.id)

    message = tools.delete_tool(custom_tool.id)

    assert message == "Tool 'lookup_invoice' deleted successfully"
    assert db_session.query(AgentTool).count() == 0
    assert db_session.query(ToolDefinition).count() == 0


@pytest.mark.unit
def test_get_unknown_tool(tools):
    with pytest.raises(NotFoundError) as exc_info:
        tools.get_tool("missing", active_only=True)
    assert exc_info.value.message == "Tool not found or inactive"


# ===========================
# Assignment Tests
# ===========================

@pytest.mark.unit
def test_assign_tool_upserts(tools, db_session, agent, custom_tool):
    first = tools.assign_tool(agent.id, custom_tool.id, config={"region": "eu"})
    second = tools.assign_tool(agent.id, custom_tool.id, is_enabled=False)

    assert first.id == second.id
    assert second.is_enabled is False
    assert second.config == {}
    assert db_session.query(AgentTool).count() == 1


@pytest.mark.unit
def test_assign_requires_active_tool_and_known_agent(tools, agent, custom_tool):
    with pytest.raises(NotFoundError):
        tools.assign_tool("missing-agent", custom_tool.id)

    tools.update_tool(custom_tool.id, {"is_active": False})
    with pytest.raises(NotFoundError):
        tools.assign_tool(agent.id, custom_tool.id)


@pytest.mark.unit
def test_enabled_tools_for_agent(tools, agent, custom_tool, function_tool):
    tools.assign_tool(agent.id, custom_tool.id)
    tools.assign_tool(agent.id, function_tool.id, is_enabled=False)

    assert [t.name for t in tools.get_enabled_tools_for_agent(agent.id)] == ["lookup_invoice"]
    assert len(tools.list_agent_tools(agent.id)) == 2


@pytest.mark.unit
def test_update_assignment(tools, agent, custom_tool):
    assignment = tools.assign_tool(agent.id, custom_tool.id)

    updated = tools.update_assignment(assignment.id, is_enabled=False, config={"limit": 5})

    assert updated.is_enabled is False
    assert updated.config == {"limit": 5}

    with pytest.raises(NotFoundError):
        tools.update_assignment("missing")


@pytest.mark.unit
def test_unassign_by_id_or_pair(tools, db_session, agent, custom_tool, function_tool):
    assignment = tools.assign_tool(agent.id, custom_tool.id)
    tools.assign_tool(agent.id, function_tool.id)

    tools.unassign_tool(assignment_id=assignment.id)
    tools.unassign_tool(agent_id=agent.id, tool_id=function_tool.id)

    assert db_session.query(AgentTool).count() == 0

    with pytest.raises(ValidationError):
        tools.unassign_tool(agent_id=agent.id)

    with pytest.raises(NotFoundError):
        tools.unassign_tool(assignment_id=assignment.id)


@pytest.mark.unit
def test_bulk_assign_replaces_all(tools, agent, custom_tool, function_tool):
    tools.assign_tool(agent.id, custom_tool.id, is_enabled=False)

    assignments = tools.bulk_assign(agent.id, [function_tool.id, function_tool.id])

    assert [a.tool_id for a in assignments] == [function_tool.id]
    assert all(a.is_enabled for a in tools.list_agent_tools(agent.id))
    assert [a.tool_id for a in tools.list_agent_tools(agent.id)] == [function_tool.id]


@pytest.mark.unit
def test_bulk_assign_rejects_unknown_tools_without_changes(tools, agent, custom_tool):
    tools.assign_tool(agent.id, custom_tool.id)

    with pytest.raises(ValidationError) as exc_info:
        tools.bulk_assign(agent.id, [custom_tool.id, "missing"])

    assert exc_info.value.message == "One or more tools not found or inactive"
    assert len(tools.list_agent_tools(agent.id)) == 1


@pytest.mark.unit
def test_bulk_assign_empty_clears(tools, agent, custom_tool):
    tools.assign_tool(agent.id, custom_tool.id)

    assert tools.bulk_assign(agent.id, []) == []
    assert tools.list_agent_tools(agent.id) == []


# ===========================
# Seeding Tests
# ===========================

@pytest.mark.unit
def test_ensure_system_tools_is_idempotent(tools):
    registry = create_default_registry()

    created = tools.ensure_system_tools(registry)

    assert created == 2 + len(registry)
    assert tools.ensure_system_tools(registry) == 0

    seeded = {t.name: t for t in tools.list_tools()}
    assert seeded["code_interpreter"].tool_type == "code_interpreter"
    assert seeded["search_chat_history"].is_system is True
    assert seeded["search_chat_history"].function_schema["parameters"]["required"] == ["query"]
