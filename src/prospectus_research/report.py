"""
Report Synthesis - folds analysis records and a financial dataset into a
Markdown investment report, in English or Chinese.

synthesize() is a pure function: no I/O, no clock. The generation time is
only rendered when the caller passes it in, so identical inputs always give
identical output.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from prospectus_research.analyzer import NO_INFORMATION
from prospectus_research.models import (
    AnalysisMethod,
    AnalysisRecord,
    CompanyIdentity,
    FinancialDataset,
    Recommendation,
    Report,
    ReportConfig,
)

TOP_STRENGTHS = 3
TOP_RISKS = 5


# =============================================================================
# Localized Text
# =============================================================================

STRINGS: Dict[str, Dict[str, str]] = {
    "en": {
        "title": "Investment Analysis Report",
        "missing": "N/A",
        "sector": "Sector",
        "generated": "Generated",
        "overall_score": "Overall score",
        "executive_summary": "Executive Summary",
        "assessment": (
            "**Overall Assessment:** Based on {methods}, the company received "
            "an average score of {score}/10."
        ),
        "primary": "**Primary Recommendation:** Most analysis methods suggest **{rec}**.",
        "key_strengths": "**Key Strengths:**",
        "major_risks": "**Major Risks:**",
        "financial_overview": "Financial Overview",
        "metric": "Metric",
        "value": "Value",
        "revenue": "Revenue",
        "net_income": "Net Income",
        "operating_cash_flow": "Operating Cash Flow",
        "total_assets": "Total Assets",
        "total_liabilities": "Total Liabilities",
        "shareholder_equity": "Shareholder Equity",
        "roe": "ROE",
        "roa": "ROA",
        "debt_to_equity": "Debt/Equity",
        "detailed_analysis": "Detailed Analysis",
        "analysis_suffix": " Analysis",
        "score": "Score",
        "recommendation": "Recommendation",
        "strengths": "Strengths",
        "weaknesses": "Weaknesses",
        "risks": "Risks",
        "key_metrics": "Key Metrics",
        "summary": "Summary",
        "investment_recommendation": "Investment Recommendation",
        "votes": "{count} votes",
        "final_recommendation": "Final Recommendation",
        "final_high": (
            "Based on comprehensive analysis, the company demonstrates good investment "
            "value. We recommend {rec}. Investors may consider including it in their "
            "portfolio while monitoring risk factors."
        ),
        "final_mid": (
            "The company shows moderate performance with both opportunities and risks. "
            "We suggest {rec} with caution and close monitoring of company developments."
        ),
        "final_low": (
            "Based on current analysis, the company's investment value is relatively "
            "limited. We recommend {rec}. Further due diligence is required if "
            "considering investment."
        ),
        "risk_assessment": "Risk Assessment",
        "major_risk_factors": "Major Risk Factors",
        "mitigation": "Risk Mitigation Recommendations",
        "disclaimer": (
            "Disclaimer: This report is for reference only and does not constitute "
            "investment advice. Investment involves risks."
        ),
        "sources": "Data source: prospectus analysis | Template: {template}",
        "list_separator": ", ",
    },
    "zh": {
        "title": "投资分析报告",
        "missing": "未提供",
        "sector": "行业",
        "generated": "报告生成时间",
        "overall_score": "综合评分",
        "executive_summary": "执行摘要",
        "assessment": "**综合评估：**基于{methods}等投资理论的综合分析，该公司获得平均评分 {score}/10分。",
        "primary": "**主要建议：**多数分析方法建议**{rec}**。",
        "key_strengths": "**投资亮点：**",
        "major_risks": "**主要风险：**",
        "financial_overview": "财务概览",
        "metric": "指标",
        "value": "数值",
        "revenue": "营业收入",
        "net_income": "净利润",
        "operating_cash_flow": "经营活动现金流",
        "total_assets": "总资产",
        "total_liabilities": "总负债",
        "shareholder_equity": "股东权益",
        "roe": "股东权益回报率",
        "roa": "资产回报率",
        "debt_to_equity": "负债权益比",
        "detailed_analysis": "详细分析",
        "analysis_suffix": "分析",
        "score": "评分",
        "recommendation": "建议",
        "strengths": "优势",
        "weaknesses": "劣势",
        "risks": "风险",
        "key_metrics": "关键指标",
        "summary": "分析总结",
        "investment_recommendation": "投资建议",
        "votes": "{count}票",
        "final_recommendation": "最终建议",
        "final_high": (
            "基于综合分析，该公司展现出良好的投资价值，建议{rec}。"
            "投资者可考虑将其纳入投资组合，但仍需关注相关风险因素。"
        ),
        "final_mid": (
            "该公司表现中等，存在一定投资机会但风险并存。"
            "建议投资者谨慎对待，可考虑{rec}，但应密切关注公司动态。"
        ),
        "final_low": (
            "基于当前分析，该公司投资价值相对有限，建议投资者{rec}。"
            "如考虑投资，需要更深入的尽职调查。"
        ),
        "risk_assessment": "风险评估",
        "major_risk_factors": "主要风险因素",
        "mitigation": "风险缓解建议",
        "disclaimer": "免责声明：本报告仅供参考，不构成投资建议。投资有风险，入市需谨慎。",
        "sources": "数据来源：招股书分析 | 报告模板：{template}",
        "list_separator": "、",
    },
}

MITIGATION_STEPS: Dict[str, List[str]] = {
    "en": [
        "Allocate assets according to your risk tolerance",
        "Monitor company operations and industry trends closely",
        "Regularly review and adjust portfolio positions",
        "Understand relevant laws, regulations, and market rules",
    ],
    "zh": [
        "建议投资者根据自身风险承受能力合理配置资产",
        "密切关注公司经营状况和行业发展趋势",
        "定期审视投资组合，适时调整持仓比例",
        "充分了解相关法律法规和市场规则",
    ],
}

METHOD_LABELS: Dict[str, Dict[AnalysisMethod, str]] = {
    "en": {
        AnalysisMethod.BUFFETT: "Buffett Value Investing",
        AnalysisMethod.LYNCH: "Peter Lynch Growth",
        AnalysisMethod.GRAHAM: "Graham Safety Margin",
        AnalysisMethod.FISHER: "Philip Fisher 15 Points",
    },
    "zh": {
        AnalysisMethod.BUFFETT: "巴菲特价值投资",
        AnalysisMethod.LYNCH: "彼得·林奇成长股",
        AnalysisMethod.GRAHAM: "格雷厄姆安全边际",
        AnalysisMethod.FISHER: "菲利普·费舍15要点",
    },
}

RECOMMENDATION_LABELS: Dict[str, Dict[Recommendation, str]] = {
    "en": {rec: rec.value for rec in Recommendation},
    "zh": {
        Recommendation.BUY: "买入",
        Recommendation.HOLD: "持有",
        Recommendation.SELL: "卖出",
        Recommendation.AVOID: "避免",
    },
}


# =============================================================================
# Number Formatting
# =============================================================================


def format_currency(value: Optional[float], language: str) -> str:
    """Scale an amount to a short suffix form.

    en: $1.20B, $350.00M, $12.50K (K/M/B/T)
    zh: 1.20亿, 3.50万, 1.20万亿

    Returns the language's missing marker for None.
    """
    if value is None:
        return STRINGS[language]["missing"]

    sign = "-" if value < 0 else ""
    magnitude = abs(value)

    if language == "zh":
        if magnitude >= 1e12:
            return f"{sign}{magnitude / 1e12:.2f}万亿"
        if magnitude >= 1e8:
            return f"{sign}{magnitude / 1e8:.2f}亿"
        if magnitude >= 1e4:
            return f"{sign}{magnitude / 1e4:.2f}万"
        return f"{sign}{magnitude:.2f}"

    if magnitude >= 1e12:
        return f"{sign}${magnitude / 1e12:.2f}T"
    if magnitude >= 1e9:
        return f"{sign}${magnitude / 1e9:.2f}B"
    if magnitude >= 1e6:
        return f"{sign}${magnitude / 1e6:.2f}M"
    if magnitude >= 1e3:
        return f"{sign}${magnitude / 1e3:.2f}K"
    return f"{sign}${magnitude:.2f}"


def format_series(values: Optional[Sequence[float]], language: str) -> str:
    if not values:
        return STRINGS[language]["missing"]
    return " → ".join(format_currency(v, language) for v in values)


def format_percent(value: Optional[float], language: str) -> str:
    if value is None:
        return STRINGS[language]["missing"]
    return f"{value:.2f}%"


def format_ratio(value: Optional[float], language: str) -> str:
    if value is None:
        return STRINGS[language]["missing"]
    return f"{value:.2f}"


# =============================================================================
# Statistics
# =============================================================================


def average_score(records: Sequence[AnalysisRecord]) -> float:
    return sum(r.score for r in records) / len(records)


def count_recommendations(records: Sequence[AnalysisRecord]) -> Dict[Recommendation, int]:
    """Votes per recommendation, keyed in first-encountered order."""
    counts: Dict[Recommendation, int] = {}
    for record in records:
        counts[record.recommendation] = counts.get(record.recommendation, 0) + 1
    return counts


def most_common_recommendation(records: Sequence[AnalysisRecord]) -> Recommendation:
    """Most frequent recommendation; ties go to the first encountered."""
    counts = count_recommendations(records)
    return max(counts, key=counts.__getitem__)


def top_unique(items: Iterable[str], limit: int) -> List[str]:
    """First-occurrence de-duplication, capped at `limit`. Placeholders are skipped."""
    seen = set()
    result = []
    for item in items:
        if item == NO_INFORMATION or item in seen:
            continue
        seen.add(item)
        result.append(item)
        if len(result) == limit:
            break
    return result


def top_strengths(records: Sequence[AnalysisRecord]) -> List[str]:
    return top_unique((s for r in records for s in r.strengths), TOP_STRENGTHS)


def top_risks(records: Sequence[AnalysisRecord]) -> List[str]:
    return top_unique((s for r in records for s in r.risks), TOP_RISKS)


# =============================================================================
# Sections
# =============================================================================


def _header(
    identity: CompanyIdentity,
    avg: float,
    language: str,
    generated_at: Optional[datetime],
) -> List[str]:
    s = STRINGS[language]
    lines = [
        f"# {identity.name} - {s['title']}",
        "",
        f"**{identity.ticker} · {identity.market.value.upper()}**",
    ]
    if identity.sector:
        lines.append(f"{s['sector']}: {identity.sector}")
    if generated_at is not None:
        lines.append(f"{s['generated']}: {generated_at.isoformat(timespec='seconds')}")
    lines.append(f"{s['overall_score']}: {avg:.1f}/10")
    return lines


def _executive_summary(
    records: Sequence[AnalysisRecord],
    avg: float,
    consensus: Recommendation,
    language: str,
) -> List[str]:
    s = STRINGS[language]
    sep = s["list_separator"]
    methods = sep.join(METHOD_LABELS[language][r.method] for r in records)
    strengths = top_strengths(records)
    risks = top_risks(records)
    return [
        f"## {s['executive_summary']}",
        "",
        s["assessment"].format(methods=methods, score=f"{avg:.1f}"),
        "",
        s["primary"].format(rec=RECOMMENDATION_LABELS[language][consensus]),
        "",
        f"{s['key_strengths']} {sep.join(strengths) if strengths else s['missing']}",
        "",
        f"{s['major_risks']} {sep.join(risks) if risks else s['missing']}",
    ]


def _financial_overview(data: FinancialDataset, language: str) -> List[str]:
    s = STRINGS[language]
    rows = [
        (s["revenue"], format_series(data.revenue, language)),
        (s["net_income"], format_series(data.net_income, language)),
        (s["operating_cash_flow"], format_series(data.operating_cash_flow, language)),
        (s["total_assets"], format_currency(data.total_assets, language)),
        (s["total_liabilities"], format_currency(data.total_liabilities, language)),
        (s["shareholder_equity"], format_currency(data.shareholder_equity, language)),
        (s["roe"], format_percent(data.roe, language)),
        (s["roa"], format_percent(data.roa, language)),
        (s["debt_to_equity"], format_ratio(data.debt_to_equity, language)),
    ]
    lines = [
        f"## {s['financial_overview']}",
        "",
        f"| {s['metric']} | {s['value']} |",
        "|---|---|",
    ]
    lines.extend(f"| {label} | {value} |" for label, value in rows)
    return lines


def _bullets(items: Sequence[str]) -> List[str]:
    return [f"- {item}" for item in items]


def _method_section(record: AnalysisRecord, language: str, depth: str) -> List[str]:
    s = STRINGS[language]
    lines = [
        f"### {METHOD_LABELS[language][record.method]}{s['analysis_suffix']}",
        "",
        f"{s['score']}: {record.score}/10 | "
        f"{s['recommendation']}: {RECOMMENDATION_LABELS[language][record.recommendation]}",
        "",
    ]

    if depth in ("detailed", "comprehensive"):
        lines += [f"**{s['strengths']}**", *_bullets(record.strengths), ""]
        lines += [f"**{s['weaknesses']}**", *_bullets(record.weaknesses), ""]

    if depth == "comprehensive":
        lines += [f"**{s['risks']}**", *_bullets(record.risks), ""]
        if record.key_metrics:
            lines.append(f"**{s['key_metrics']}**")
            lines += [f"- {name}: {value:,.2f}" for name, value in record.key_metrics.items()]
            lines.append("")

    lines += [f"**{s['summary']}**", "", record.summary]
    return lines


def _detailed_analysis(
    records: Sequence[AnalysisRecord],
    language: str,
    depth: str,
) -> List[str]:
    lines = [f"## {STRINGS[language]['detailed_analysis']}"]
    for record in records:
        lines.append("")
        lines.extend(_method_section(record, language, depth))
    return lines


def final_recommendation_text(avg: float, consensus: Recommendation, language: str) -> str:
    """Score-banded closing recommendation (>=7, >=5, else)."""
    s = STRINGS[language]
    rec = RECOMMENDATION_LABELS[language][consensus]
    if avg >= 7:
        return s["final_high"].format(rec=rec)
    if avg >= 5:
        return s["final_mid"].format(rec=rec)
    return s["final_low"].format(rec=rec)


def _investment_recommendation(
    records: Sequence[AnalysisRecord],
    avg: float,
    consensus: Recommendation,
    language: str,
) -> List[str]:
    s = STRINGS[language]
    lines = [f"## {s['investment_recommendation']}", ""]
    for rec, count in count_recommendations(records).items():
        lines.append(f"- {RECOMMENDATION_LABELS[language][rec]}: {s['votes'].format(count=count)}")
    lines += [
        "",
        f"### {s['final_recommendation']}",
        "",
        final_recommendation_text(avg, consensus, language),
    ]
    return lines


def _risk_assessment(records: Sequence[AnalysisRecord], language: str) -> List[str]:
    s = STRINGS[language]
    risks = top_risks(records) or [s["missing"]]
    return [
        f"## {s['risk_assessment']}",
        "",
        f"### {s['major_risk_factors']}",
        "",
        *_bullets(risks),
        "",
        f"### {s['mitigation']}",
        "",
        *_bullets(MITIGATION_STEPS[language]),
    ]


# =============================================================================
# Public API
# =============================================================================


def synthesize(
    records: Sequence[AnalysisRecord],
    identity: CompanyIdentity,
    financial_data: Optional[FinancialDataset] = None,
    config: Optional[ReportConfig] = None,
    generated_at: Optional[datetime] = None,
) -> Report:
    """
    Render an investment report from analysis records.

    Args:
        records: At least one analysis record
        identity: Company the records are about
        financial_data: Extracted financials; missing fields render as a marker
        config: Language and layout options (default: Chinese, detailed)
        generated_at: Shown in the header when given

    Returns:
        Report with the Markdown body and summary statistics

    Raises:
        ValueError: If records is empty
    """
    if not records:
        raise ValueError("At least one analysis record is required to build a report")

    config = config or ReportConfig()
    data = financial_data or FinancialDataset()
    language = config.language

    avg = average_score(records)
    consensus = most_common_recommendation(records)

    sections = [
        _header(identity, avg, language, generated_at),
        _executive_summary(records, avg, consensus, language),
        _financial_overview(data, language),
        _detailed_analysis(records, language, config.analysis_depth),
        _investment_recommendation(records, avg, consensus, language),
        _risk_assessment(records, language),
        [
            "---",
            "",
            STRINGS[language]["disclaimer"],
            "",
            STRINGS[language]["sources"].format(template=config.template),
        ],
    ]
    body = "\n\n".join("\n".join(section) for section in sections) + "\n"

    return Report(
        body=body,
        language=language,
        average_score=avg,
        consensus=consensus,
        recommendation_counts={
            rec.value: count for rec, count in count_recommendations(records).items()
        },
        methods=[r.method for r in records],
        generated_at=generated_at,
    )
