# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Utilities for checking availability of network ports.
"""
import errno
import os
import socket
from typing import Optional

import psutil


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """
    Checks if a port can be bound on the given address.

    Only "address in use" and "permission denied" count as taken; an
    address that is not local to this machine cannot be checked here and
    is reported as free.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as s:
        if os.name != "nt":
            # Lingering TIME_WAIT connections must not read as a listener.
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, port))
            return True
        except OSError as e:
            return e.errno not in (errno.EADDRINUSE, errno.EACCES)


def find_port_owner(port: int) -> Optional[str]:
    """
    Describes the process listening on a port, e.g. ``redis-server (pid 812)``.

    Returns None when the owner cannot be determined, which is common
    without elevated privileges.
    """
    try:
        connections = psutil.net_connections(kind="inet")
    except psutil.Error:
        return None
    for conn in connections:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.laddr.port != port:
            continue
        if conn.pid is None:
            return None
        try:
            return f"{psutil.Process(conn.pid).name()} (pid {conn.pid})"
        except psutil.Error:
            return f"pid {conn.pid}"
    return None
