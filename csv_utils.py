import csv
import io
import json
from typing import Iterable, Any, Sequence, Callable, Optional
from fastapi.responses import JSONResponse, StreamingResponse

from models import STATUS_LABELS
from payload_codec import backup_items, format_iso

CSV_COLUMNS: Sequence[tuple[str, Callable[[Any], str]]] = [
    ("id", lambda a: str(a.id)),
    ("名称", lambda a: a.name),
    ("价格", lambda a: f"{a.price:.2f}"),
    ("购买时间", lambda a: format_iso(a.purchase_date)),
    ("登记时间", lambda a: format_iso(a.registered_at)),
    ("报废年限", lambda a: str(a.scrap_years)),
    ("状态", lambda a: STATUS_LABELS.get(a.status, a.status)),
    ("分类", lambda a: a.category or ""),
    ("位置", lambda a: a.location or ""),
    ("负责人", lambda a: a.owner or ""),
    ("序列号", lambda a: a.serial_number or ""),
    ("备注", lambda a: (a.note or "").replace(",", ";")),
]


def decode_text_bytes(data: bytes) -> str:
    # UTF-8(BOM) → UTF-8 → GB18030 の順に試す
    for enc in ("utf-8-sig", "utf-8", "gb18030"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    # 最後の手段
    return data.decode("utf-8", errors="replace")


def assets_to_csv_response(
    assets: Iterable[Any],
    *,
    filename: str = "assets.csv",
    columns: Optional[Sequence[tuple[str, Callable[[Any], str]]]] = None,
) -> StreamingResponse:
    """
    assets(iterable) を CSV にしてダウンロードさせる StreamingResponse を返す。
    ORM/PydanticどちらでもOK（属性アクセスできればOK）
    """
    if columns is None:
        columns = CSV_COLUMNS

    def generate():
        buf = io.StringIO()
        w = csv.writer(buf, lineterminator="\n")

        # header
        w.writerow([h for h, _ in columns])
        yield buf.getvalue()
        buf.seek(0)
        buf.truncate(0)

        # rows
        for a in assets:
            w.writerow([getter(a) for _, getter in columns])
            yield buf.getvalue()
            buf.seek(0)
            buf.truncate(0)

    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(generate(), media_type="text/csv; charset=utf-8", headers=headers)


def assets_to_json_response(assets: Iterable[Any], *, filename: str = "assets-backup.json") -> JSONResponse:
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return JSONResponse(backup_items(assets), headers=headers)


def json_bytes_to_items(data: bytes) -> tuple[list[dict], str | None]:
    """
    バックアップ JSON のバイト列を items(list[dict]) に変換する。
    戻り値: (items, error_message)
      - 成功: (items, None)
      - 失敗: ([], "backup is not valid JSON") など
    """
    text = decode_text_bytes(data)
    try:
        loaded = json.loads(text)
    except json.JSONDecodeError:
        return [], "backup is not valid JSON"
    if not isinstance(loaded, list):
        return [], "backup must be a JSON array"
    return loaded, None
