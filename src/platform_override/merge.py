"""
merge - 行级三方合并

输入三个版本:
- base: override 上次对账时固定的 upstream 内容（pinned）
- theirs: 新目标版本的 upstream 内容
- ours: 当前 downstream override 内容

合并规则:
1. 仅一侧修改的区域采用该侧内容
2. 两侧做出相同修改的区域只保留一份
3. 两侧做出不同修改的区域产生冲突块（git 风格冲突标记），绝不偏向任一侧

冲突标记格式:
    <<<<<<< {ours_label}
    ...
    ||||||| {base_label}
    ...
    =======
    ...
    >>>>>>> {theirs_label}
"""

from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Iterator, List, Optional, Sequence, Tuple

DEFAULT_OURS_LABEL = "LOCAL (override)"
DEFAULT_BASE_LABEL = "BASE (upstream pinned)"
DEFAULT_THEIRS_LABEL = "UPSTREAM (new)"

# 同步区域: (base_start, base_end, ours_start, ours_end, theirs_start, theirs_end)
SyncRegion = Tuple[int, int, int, int, int, int]


@dataclass(frozen=True)
class MergeResult:
    """三方合并结果"""

    content: str
    has_conflicts: bool
    conflict_count: int = 0


def _intersect(ra: Tuple[int, int], rb: Tuple[int, int]) -> Optional[Tuple[int, int]]:
    """两个半开区间的交集，为空时返回 None"""
    start = max(ra[0], rb[0])
    end = min(ra[1], rb[1])
    if start < end:
        return start, end
    return None


def _find_sync_regions(
    base: Sequence[str], ours: Sequence[str], theirs: Sequence[str]
) -> List[SyncRegion]:
    """
    找出三个版本中同时保持一致的区域

    分别计算 base→ours、base→theirs 的匹配块，取二者在 base 上的交集。
    末尾追加一个零长度哨兵区域，便于处理文件尾部的修改。
    """
    ours_matches = SequenceMatcher(None, base, ours, autojunk=False).get_matching_blocks()
    theirs_matches = SequenceMatcher(None, base, theirs, autojunk=False).get_matching_blocks()

    regions: List[SyncRegion] = []
    io = it = 0
    while io < len(ours_matches) and it < len(theirs_matches):
        o_base, o_match, o_len = ours_matches[io]
        t_base, t_match, t_len = theirs_matches[it]

        overlap = _intersect((o_base, o_base + o_len), (t_base, t_base + t_len))
        if overlap:
            base_start, base_end = overlap
            length = base_end - base_start
            ours_start = o_match + (base_start - o_base)
            theirs_start = t_match + (base_start - t_base)
            regions.append(
                (
                    base_start,
                    base_end,
                    ours_start,
                    ours_start + length,
                    theirs_start,
                    theirs_start + length,
                )
            )

        if o_base + o_len < t_base + t_len:
            io += 1
        else:
            it += 1

    regions.append((len(base), len(base), len(ours), len(ours), len(theirs), len(theirs)))
    return regions


def _merge_regions(
    base: Sequence[str], ours: Sequence[str], theirs: Sequence[str]
) -> Iterator[Tuple]:
    """
    产出合并区域

    区域类型:
    - ("unchanged", base_start, base_end)
    - ("same", ours_start, ours_end): 两侧相同修改
    - ("ours", ours_start, ours_end)
    - ("theirs", theirs_start, theirs_end)
    - ("conflict", base_start, base_end, ours_start, ours_end, theirs_start, theirs_end)
    """
    iz = io = it = 0
    for base_match, base_end, ours_match, ours_end, theirs_match, theirs_end in _find_sync_regions(
        base, ours, theirs
    ):
        if ours_match - io or theirs_match - it:
            ours_chunk = ours[io:ours_match]
            theirs_chunk = theirs[it:theirs_match]
            base_chunk = base[iz:base_match]
            if ours_chunk == theirs_chunk:
                yield ("same", io, ours_match)
            else:
                ours_unchanged = base_chunk == ours_chunk
                theirs_unchanged = base_chunk == theirs_chunk
                if ours_unchanged and not theirs_unchanged:
                    yield ("theirs", it, theirs_match)
                elif theirs_unchanged and not ours_unchanged:
                    yield ("ours", io, ours_match)
                else:
                    yield ("conflict", iz, base_match, io, ours_match, it, theirs_match)
            io = ours_match
            it = theirs_match
        iz = base_match

        if base_end > base_match:
            yield ("unchanged", base_match, base_end)
            iz = base_end
            io = ours_end
            it = theirs_end


def _ensure_newline(lines: List[str]) -> List[str]:
    """冲突块内的最后一行缺少换行时补齐，避免与标记行粘连"""
    if lines and not lines[-1].endswith("\n"):
        return lines[:-1] + [lines[-1] + "\n"]
    return lines


def three_way_merge(
    base: str,
    ours: str,
    theirs: str,
    ours_label: str = DEFAULT_OURS_LABEL,
    base_label: str = DEFAULT_BASE_LABEL,
    theirs_label: str = DEFAULT_THEIRS_LABEL,
) -> MergeResult:
    """
    执行三方合并

    Args:
        base: pinned upstream 内容
        ours: 当前 override 内容
        theirs: 新目标 upstream 内容
        ours_label / base_label / theirs_label: 冲突标记中的标签

    Returns:
        MergeResult(content, has_conflicts, conflict_count)
    """
    base_lines = base.splitlines(keepends=True)
    ours_lines = ours.splitlines(keepends=True)
    theirs_lines = theirs.splitlines(keepends=True)

    merged: List[str] = []
    conflict_count = 0
    for region in _merge_regions(base_lines, ours_lines, theirs_lines):
        kind = region[0]
        if kind == "unchanged":
            merged.extend(base_lines[region[1]:region[2]])
        elif kind in ("same", "ours"):
            merged.extend(ours_lines[region[1]:region[2]])
        elif kind == "theirs":
            merged.extend(theirs_lines[region[1]:region[2]])
        else:
            conflict_count += 1
            _, zs, ze, os_, oe, ts, te = region
            merged.append(f"<<<<<<< {ours_label}\n")
            merged.extend(_ensure_newline(ours_lines[os_:oe]))
            merged.append(f"||||||| {base_label}\n")
            merged.extend(_ensure_newline(base_lines[zs:ze]))
            merged.append("=======\n")
            merged.extend(_ensure_newline(theirs_lines[ts:te]))
            merged.append(f">>>>>>> {theirs_label}\n")

    return MergeResult(
        content="".join(merged),
        has_conflicts=conflict_count > 0,
        conflict_count=conflict_count,
    )
