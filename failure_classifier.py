"""Map raw run errors to user-facing failure categories and remediations."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class FailureCategory(str, Enum):
    NETWORK = "network"
    CONFIG = "config"
    ELEMENT_LOCATOR = "element-locator"
    PERMISSION = "permission"
    GENERIC = "generic"


# Checked in this order; the first category with a matching term wins.
CATEGORY_TERMS: Tuple[Tuple[FailureCategory, Tuple[str, ...]], ...] = (
    (
        FailureCategory.NETWORK,
        ("network", "connection", "connect", "timeout", "timed out", "etimedout",
         "econnrefused", "econnreset", "dns"),
    ),
    (
        FailureCategory.CONFIG,
        ("config", "yaml", "parse", "syntax", "unexpected token", "indent"),
    ),
    (
        FailureCategory.ELEMENT_LOCATOR,
        ("element", "selector", "not found"),
    ),
    (
        FailureCategory.PERMISSION,
        ("permission", "access", "forbidden", "unauthorized"),
    ),
)

DEFAULT_LOCALE = "en"
TECHNICAL_DETAIL_LIMIT = 200


@dataclass(frozen=True)
class Remediation:
    title: str
    description: str


@dataclass
class Classification:
    """Category, headline and remediation list for one failure."""

    category: FailureCategory
    summary: str
    remediations: List[Remediation] = field(default_factory=list)
    show_technical_detail: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "category": self.category.value,
            "summary": self.summary,
            "remediations": [{"title": r.title, "description": r.description} for r in self.remediations],
            "showTechnicalDetail": self.show_technical_detail,
        }


def _r(*pairs: Tuple[str, str]) -> List[Remediation]:
    return [Remediation(title, description) for title, description in pairs]


CATALOG: Dict[str, Dict[FailureCategory, Tuple[str, List[Remediation]]]] = {
    "en": {
        FailureCategory.NETWORK: (
            "🌐 **Network Connection Issue** - Unable to connect to the target website, possibly due to "
            "unstable network or temporary website unavailability.",
            _r(
                ("Check Network Connection", "Ensure your network connection is stable"),
                ("Verify Website Address", "Confirm the test website URL is correct and accessible"),
                ("Retry Later", "Wait a few minutes and retry the test"),
            ),
        ),
        FailureCategory.CONFIG: (
            "⚙️ **Configuration File Issue** - There's a problem with the automation test configuration, "
            "possibly format errors or missing necessary information.",
            _r(
                ("Regenerate Configuration", "Delete current configuration and regenerate"),
                ("Check Test Steps", "Ensure test steps are complete and logically correct"),
                ("Verify URL Settings", "Confirm test target website URL is set correctly"),
            ),
        ),
        FailureCategory.ELEMENT_LOCATOR: (
            "🎯 **Page Element Location Failed** - Unable to find the required elements on the webpage, "
            "possibly due to page structure changes.",
            _r(
                ("Update Test Steps", "Check and update operation descriptions in test steps"),
                ("Check Page Changes", "Confirm if the target webpage has been updated or redesigned"),
                ("Simplify Operation Steps", "Try using more generic operation descriptions"),
            ),
        ),
        FailureCategory.PERMISSION: (
            "🔒 **Access Permission Issue** - Insufficient permissions to access the target website or "
            "perform certain operations.",
            _r(
                ("Check Login Status", "Ensure test steps include necessary login operations"),
                ("Verify Permission Settings", "Confirm test account has sufficient operation permissions"),
                ("Contact Administrator", "For enterprise internal systems, contact system administrator"),
            ),
        ),
        FailureCategory.GENERIC: (
            "⚠️ **Test Execution Issue** - The automation test encountered an unexpected situation during execution.",
            _r(
                ("Re-run Test", "Sometimes re-running can resolve temporary issues"),
                ("Check Test Configuration", "Confirm automation configuration is correct"),
                ("Simplify Test Steps", "Try reducing complex operation steps"),
                ("Seek Help", "Contact technical support for further assistance"),
            ),
        ),
    },
    "zh": {
        FailureCategory.NETWORK: (
            "🌐 **网络连接问题** - 无法连接到目标网站，可能是网络不稳定或网站暂时无法访问。",
            _r(
                ("检查网络连接", "确保您的网络连接正常"),
                ("验证网站地址", "确认测试的网站URL是否正确且可访问"),
                ("稍后重试", "等待几分钟后重新执行测试"),
            ),
        ),
        FailureCategory.CONFIG: (
            "⚙️ **配置文件问题** - 自动化测试的配置文件有问题，可能是格式错误或缺少必要信息。",
            _r(
                ("重新生成配置", "删除当前配置并重新生成"),
                ("检查测试步骤", "确保测试步骤完整且逻辑正确"),
                ("验证URL设置", "确认测试目标网站URL设置正确"),
            ),
        ),
        FailureCategory.ELEMENT_LOCATOR: (
            "🎯 **页面元素定位失败** - 无法在网页上找到需要操作的元素，可能是页面结构发生了变化。",
            _r(
                ("更新测试步骤", "检查并更新测试步骤中的操作描述"),
                ("检查页面变化", "确认目标网页是否有更新或改版"),
                ("简化操作步骤", "尝试使用更通用的操作描述"),
            ),
        ),
        FailureCategory.PERMISSION: (
            "🔒 **访问权限问题** - 没有足够的权限访问目标网站或执行某些操作。",
            _r(
                ("检查登录状态", "确保测试步骤包含必要的登录操作"),
                ("验证权限设置", "确认测试账号有足够的操作权限"),
                ("联系管理员", "如果是企业内部系统，请联系系统管理员"),
            ),
        ),
        FailureCategory.GENERIC: (
            "⚠️ **测试执行遇到问题** - 自动化测试在执行过程中遇到了意外情况。",
            _r(
                ("重新执行测试", "有时重新运行可以解决临时问题"),
                ("检查测试配置", "确认自动化配置是否正确"),
                ("简化测试步骤", "尝试减少复杂的操作步骤"),
                ("寻求帮助", "联系技术支持获取进一步协助"),
            ),
        ),
    },
    "ja": {
        FailureCategory.NETWORK: (
            "🌐 **ネットワーク接続の問題** - 対象ウェブサイトに接続できません。ネットワークが不安定であるか、"
            "ウェブサイトが一時的にアクセスできない可能性があります。",
            _r(
                ("ネットワーク接続を確認", "ネットワーク接続が安定していることを確認してください"),
                ("ウェブサイトアドレスを確認", "テストウェブサイトのURLが正しくアクセス可能であることを確認してください"),
                ("後で再試行", "数分待ってからテストを再実行してください"),
            ),
        ),
        FailureCategory.CONFIG: (
            "⚙️ **設定ファイルの問題** - 自動化テストの設定ファイルに問題があります。"
            "フォーマットエラーまたは必要な情報が不足している可能性があります。",
            _r(
                ("設定を再生成", "現在の設定を削除して再生成してください"),
                ("テストステップを確認", "テストステップが完全で論理的に正しいことを確認してください"),
                ("URL設定を確認", "テスト対象ウェブサイトのURL設定が正しいことを確認してください"),
            ),
        ),
        FailureCategory.ELEMENT_LOCATOR: (
            "🎯 **ページ要素の特定に失敗** - ウェブページ上で操作が必要な要素を見つけることができません。"
            "ページ構造が変更された可能性があります。",
            _r(
                ("テストステップを更新", "テストステップの操作説明を確認して更新してください"),
                ("ページの変更を確認", "対象ウェブページが更新またはリニューアルされていないか確認してください"),
                ("操作ステップを簡素化", "より汎用的な操作説明を使用してみてください"),
            ),
        ),
        FailureCategory.PERMISSION: (
            "🔒 **アクセス権限の問題** - 対象ウェブサイトにアクセスしたり、特定の操作を実行するのに十分な権限がありません。",
            _r(
                ("ログイン状態を確認", "テストステップに必要なログイン操作が含まれていることを確認してください"),
                ("権限設定を確認", "テストアカウントに十分な操作権限があることを確認してください"),
                ("管理者に連絡", "企業内部システムの場合は、システム管理者に連絡してください"),
            ),
        ),
        FailureCategory.GENERIC: (
            "⚠️ **テスト実行の問題** - 自動化テストの実行中に予期しない状況が発生しました。",
            _r(
                ("テストを再実行", "再実行により一時的な問題が解決される場合があります"),
                ("テスト設定を確認", "自動化設定が正しいことを確認してください"),
                ("テストステップを簡素化", "複雑な操作ステップを減らしてみてください"),
                ("サポートを求める", "技術サポートに連絡してさらなる支援を求めてください"),
            ),
        ),
    },
}

MESSAGE_LABELS: Dict[str, Dict[str, str]] = {
    "en": {
        "test_failed": "❌ Automation Test Failed",
        "test_case": "📋 Test Case",
        "problem": "🚨 Problem Description",
        "technical_details": "🔧 Technical Details (Click to expand)",
        "error_details": "**Error Details**",
        "solutions": "🛠️ Solutions",
        "technical_fallback": "Technical issue encountered during execution",
    },
    "zh": {
        "test_failed": "❌ 自动化测试失败",
        "test_case": "📋 测试用例",
        "problem": "🚨 问题描述",
        "technical_details": "🔧 技术详情 (点击展开)",
        "error_details": "**错误详情**",
        "solutions": "🛠️ 解决方案",
        "technical_fallback": "执行过程中遇到技术问题",
    },
    "ja": {
        "test_failed": "❌ 自動化テストが失敗しました",
        "test_case": "📋 テストケース",
        "problem": "🚨 問題の説明",
        "technical_details": "🔧 技術的詳細 (クリックして展開)",
        "error_details": "**エラー詳細**",
        "solutions": "🛠️ 解決策",
        "technical_fallback": "実行中に技術的な問題が発生しました",
    },
}


def _resolve_locale(locale: Optional[str]) -> str:
    if not locale:
        return DEFAULT_LOCALE
    short = locale.lower().split("-")[0].split("_")[0]
    return short if short in CATALOG else DEFAULT_LOCALE


def categorize(error_text: Optional[str]) -> FailureCategory:
    """Pick the first category whose terms appear in the error text."""
    lowered = (error_text or "").lower()
    for category, terms in CATEGORY_TERMS:
        if any(term in lowered for term in terms):
            return category
    return FailureCategory.GENERIC


def classify(error_text: Optional[str], locale: Optional[str] = None) -> Classification:
    """Classify a raw error string. Never raises; empty input is generic."""
    category = categorize(error_text if isinstance(error_text, str) else str(error_text or ""))
    summary, remediations = CATALOG[_resolve_locale(locale)][category]
    return Classification(
        category=category,
        summary=summary,
        remediations=list(remediations),
        show_technical_detail=category is FailureCategory.GENERIC,
    )


def _clean_error_text(error_text: str, fallback: str) -> str:
    """Reduce a JSON error payload to its message, else truncate."""
    match = re.search(r"\{[\s\S]*\}", error_text)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            return error_text[:TECHNICAL_DETAIL_LIMIT]
        if isinstance(payload, dict):
            for key in ("message", "error", "description"):
                if payload.get(key):
                    return str(payload[key])
        return fallback
    return error_text[:TECHNICAL_DETAIL_LIMIT]


def format_failure_message(
    classification: Classification,
    error_text: str,
    test_case_title: Optional[str] = None,
    locale: Optional[str] = None,
) -> str:
    """Render the Markdown shown to the user for a failed run."""
    labels = MESSAGE_LABELS[_resolve_locale(locale)]
    parts = [f"## {labels['test_failed']}\n\n"]
    if test_case_title:
        parts.append(f"**{labels['test_case']}**: {test_case_title}\n\n")

    parts.append(f"### {labels['problem']}\n\n{classification.summary}\n\n")

    if classification.show_technical_detail:
        detail = _clean_error_text(error_text or "", labels["technical_fallback"])
        parts.append(f"<details>\n<summary>{labels['technical_details']}</summary>\n\n")
        parts.append(f"{labels['error_details']}: {detail}\n\n")
        parts.append("</details>\n\n")

    parts.append(f"### {labels['solutions']}\n\n")
    for index, remediation in enumerate(classification.remediations, start=1):
        parts.append(f"{index}. **{remediation.title}** - {remediation.description}\n")
    return "".join(parts)
