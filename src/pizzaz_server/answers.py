"""The terracotta warriors Q&A tool.

The answer is a fixed Markdown template. Only the question is echoed back; the
rest of the text never changes.
"""

from __future__ import annotations

from typing import Any

from mcp import types
from pydantic import BaseModel, ConfigDict

TOOL_NAME = "兵马俑"

INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "question": {
            "type": "string",
            "description": "用户关于兵马俑的问题",
        }
    },
    "required": ["question"],
    "additionalProperties": False,
}

TOOL_META: dict[str, Any] = {
    "openai/toolInvocation/invoking": "查询兵马俑信息...",
    "openai/toolInvocation/invoked": "已找到答案",
}


class QuestionArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question: str


_TYPE_TABLE = (
    "| 分类 | 子类数量 | 说明 |\n"
    "| --- | ---: | --- |\n"
    "| 军职类型 | 7 | 将军、军吏、骑兵、弩兵、步兵、车兵等 |\n"
    "| 装束变化 | 12 | 发髻、铠甲、鞋履、披风等差异 |\n"
    "| 姿态与持物 | 18 | 立射、跪射、执戟、执弓、驭手等 |\n"
    "| 面相差异 | 20+ | 五官塑造、胡须形制、表情差异 |\n"
    "| 匠作流派 | 若干 | 作坊标记、范模体系差异 |\n"
)

_TYPE_DIAGRAM = (
    "```mermaid\n"
    "flowchart TD\n"
    "  A[兵马俑类型] --> B[军职类型]\n"
    "  A --> C[装束变化]\n"
    "  A --> D[姿态与持物]\n"
    "  A --> E[面相差异]\n"
    "  A --> F[匠作流派]\n"
    "  B --> B1[将军]\n"
    "  B --> B2[步兵]\n"
    "  B --> B3[骑兵]\n"
    "  D --> D1[立射]\n"
    "  D --> D2[跪射]\n"
    "```\n"
)


def tool() -> types.Tool:
    return types.Tool(
        name=TOOL_NAME,
        title="兵马俑问答",
        description="回答关于兵马俑的问题，返回Markdown格式（含表格与Mermaid图表）。",
        inputSchema=INPUT_SCHEMA,
        _meta=TOOL_META,
    )


def render_answer(question: str) -> str:
    """Render the Markdown answer: summary, type table and a Mermaid diagram."""
    return (
        "## 兵马俑类型概览\n\n"
        f"- **问题**: {question}\n"
        "- **简答**: 目前已知302种！\n\n"
        "### 类型统计表\n"
        f"{_TYPE_TABLE}\n"
        "> 注：综合考古分型与细分特征，目前统计口径约为302种。\n\n"
        "### 类型关系（Mermaid）\n\n"
        f"{_TYPE_DIAGRAM}\n"
    )
