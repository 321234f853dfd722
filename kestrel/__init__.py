# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
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
Kestrel - an agent loop for local language models.

Kestrel streams a local model's response, detects the action markers it
emits (tool calls and file writes), runs them against MCP tool servers or a
sandboxed local writer, and feeds the results back for further turns.

Usage:
    from kestrel import ConversationOrchestrator, ToolRouter, load_settings

    settings = load_settings()
    async with ToolRouter(servers) as router:
        await router.connect_all()
        orchestrator = ConversationOrchestrator(engine, router=router)
        result = await orchestrator.run_exchange("create notes.txt with a summary")
"""

__version__ = "0.1.0"
__author__ = "Vijaykumar Singh"
__email__ = "singhvjd@gmail.com"
__license__ = "Apache-2.0"

from kestrel.agent.orchestrator import (
    ConversationOrchestrator,
    ExchangeResult,
    ExchangeStatus,
)
from kestrel.agent.action_detector import ActionDetector
from kestrel.config.settings import Settings, load_settings
from kestrel.files.operations import FileOperationEngine, SandboxPolicy
from kestrel.mcp.router import ToolRouter

__all__ = [
    "__version__",
    "ActionDetector",
    "ConversationOrchestrator",
    "ExchangeResult",
    "ExchangeStatus",
    "FileOperationEngine",
    "SandboxPolicy",
    "Settings",
    "ToolRouter",
    "load_settings",
]
