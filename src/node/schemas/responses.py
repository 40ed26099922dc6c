"""
Response Schema Definitions

Contains functions for creating the node's transport-level responses.
"""

from typing import Dict, Any, Optional


def create_error_response(
    error_message: str,
    error_code: str,
    ref: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create an error response.

    Args:
        error_message: Error message text
        error_code: Machine readable error code
        ref: Reference of the request that failed, if known

    Returns:
        dict: Error response
    """
    return {
        "type": "error",
        "data": {
            "ref": ref,
            "message": error_message,
            "error_code": error_code,
        },
    }


def create_whereis_reply(
    ref: Optional[str],
    name: str,
    pid: Optional[str],
) -> Dict[str, Any]:
    """
    Create a whereis_reply response.

    Args:
        ref: Reference of the whereis request
        name: The name that was looked up
        pid: Pid of the registered process, None when nothing is registered

    Returns:
        dict: Lookup response
    """
    return {
        "type": "whereis_reply",
        "data": {"ref": ref, "name": name, "pid": pid},
    }


def create_join_reply(ref: Optional[str], channel_id: str) -> Dict[str, Any]:
    """
    Create a join_reply response carrying the new reply channel.

    Args:
        ref: Reference of the join request
        channel_id: Identifier of the channel the server will deliver on

    Returns:
        dict: Join handshake response
    """
    return {
        "type": "join_reply",
        "data": {"ref": ref, "channel_id": channel_id},
    }


def create_exit_notification(pid: str, reason: str) -> Dict[str, Any]:
    """
    Create an exit notification sent to clients linked to a process.

    Args:
        pid: Pid of the process that exited
        reason: Exit reason

    Returns:
        dict: Exit notification
    """
    return {
        "type": "exit",
        "data": {"pid": pid, "reason": reason},
    }
