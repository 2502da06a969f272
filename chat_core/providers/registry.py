"""接口端点与参数描述。

- 端点：chat/completions、completions、models 都挂在同一个 base_url 下。
- PARAMETERS：给通用参数面板用的描述列表（名称、类型、范围、默认值）。
  范围只是展示信息，核心代码不做截断，非法值由服务端通过错误帧拒绝。
"""

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Union


CHAT_COMPLETIONS_PATH = "/chat/completions"
COMPLETIONS_PATH = "/completions"
MODELS_PATH = "/models"


@dataclass(frozen=True)
class ParameterSpec:
    """单个生成参数的描述。"""

    name: str
    kind: Literal["number", "integer"]
    minimum: Union[int, float]
    maximum: Union[int, float]
    default: Optional[Union[int, float]]
    # optional=True 表示可以不设置（交给服务端默认值）
    optional: bool = False


PARAMETERS: List[ParameterSpec] = [
    ParameterSpec(name="max_tokens", kind="integer", minimum=1, maximum=4096, default=None, optional=True),
    ParameterSpec(name="temperature", kind="number", minimum=0.0, maximum=2.0, default=1.0),
    ParameterSpec(name="top_p", kind="number", minimum=0.0, maximum=1.0, default=1.0),
    ParameterSpec(name="presence_penalty", kind="number", minimum=-2.0, maximum=2.0, default=0.0),
    ParameterSpec(name="frequency_penalty", kind="number", minimum=-2.0, maximum=2.0, default=0.0),
]

PARAMETER_REGISTRY: Dict[str, ParameterSpec] = {p.name: p for p in PARAMETERS}


def get_parameter_spec(name: str) -> ParameterSpec:
    """根据名称获取参数描述。"""

    try:
        return PARAMETER_REGISTRY[name]
    except KeyError:
        raise KeyError(f"Unknown parameter: {name!r}") from None
