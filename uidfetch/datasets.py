from dataclasses import dataclass
from typing import Dict, List, Tuple

from uidfetch.config import DEFAULT_BASE_URL, ConfigurationError


@dataclass(frozen=True)
class Dataset:
    name: str
    description: str
    # "{base}" 会被替换为规范化后的 base_url；不含 "{base}" 的模板为固定镜像
    url_templates: Tuple[str, ...]

    def build_urls(self, base_url: str, uid: int) -> List[str]:
        return [template.format(base=base_url, uid=uid) for template in self.url_templates]


def get_datasets() -> List[Dataset]:
    # 已知数据集与其 URL 规则，镜像按顺序依次尝试
    return [
        Dataset(
            name="gs",
            description="Genshin Impact player showcase",
            url_templates=("{base}api/uid/{uid}",),
        ),
        Dataset(
            name="sr",
            description="Honkai: Star Rail player showcase",
            url_templates=("{base}api/hsr/uid/{uid}",),
        ),
        Dataset(
            name="zzz",
            description="Zenless Zone Zero player showcase (two mirrors)",
            url_templates=(
                "https://enka.network/api/zzz/uid/{uid}",
                "https://profile.microgg.cn/api/zzz/uid/{uid}",
            ),
        ),
    ]


DATASET_MAP: Dict[str, Dataset] = {dataset.name: dataset for dataset in get_datasets()}


def resolve_dataset(name: str) -> Dataset:
    key = (name or "").strip().lower()
    dataset = DATASET_MAP.get(key)
    if dataset is None:
        raise ConfigurationError(f"unsupported dataset: {name}")
    return dataset


def normalize_base_url(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        value = DEFAULT_BASE_URL
    if not value.endswith("/"):
        value += "/"
    return value
