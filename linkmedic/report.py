"""
Report formatting and run-to-run status tracking
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import LinkRecord, LinkStatus, SuggestionResult
from .revenue import RevenueSettings, estimate_monthly_loss


logger = logging.getLogger(__name__)

STATUS_ICONS = {
    LinkStatus.OK: '✅',
    LinkStatus.OUT_OF_STOCK: '📦',
    LinkStatus.OUT_OF_STOCK_THIRD_PARTY: '📦',
    LinkStatus.NOT_FOUND: '❌',
    LinkStatus.SEARCH_REDIRECT: '🔍',
    LinkStatus.MISSING_TAG: '🏷️',
    LinkStatus.REDIRECT: '↪️',
    LinkStatus.UNKNOWN: '❓',
}

UNGROUPED = 'Links'


def _loss_order(loss: Optional[float]):
    return (loss is None, -(loss or 0))


def status_changes(previous: Dict[str, str], records: List[LinkRecord]) -> List[Dict]:
    """Links whose status differs from the last saved run"""
    changes = []
    for record in records:
        before = previous.get(record.url)
        if before is not None and before != record.status.value:
            changes.append({'url': record.url, 'previous': before, 'current': record.status.value})
    return changes


def load_state(path: Union[str, Path]) -> Dict[str, str]:
    """Statuses saved by the previous run, empty when there is none"""
    path = Path(path)
    if not path.exists():
        return {}
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return dict(data.get('statuses', {}))


def save_state(path: Union[str, Path], records: List[LinkRecord]) -> None:
    state = {
        'saved_at': datetime.now().isoformat(),
        'statuses': {r.url: r.status.value for r in records},
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(state, f, indent=2)
    logger.debug('report: saved %d statuses to %s', len(records), path)


class OutputFormatter:
    """Handle different output formats"""

    def __init__(self, verbose: bool = False, format_type: str = 'text',
                 revenue_settings: Optional[RevenueSettings] = None):
        self.verbose = verbose
        self.format_type = format_type
        self.revenue_settings = revenue_settings or RevenueSettings()

    def format_results(self, records: List[LinkRecord], sources: Optional[Dict[str, Dict]] = None,
                       changes: Optional[List[Dict]] = None) -> str:
        """Format audit records; ``sources`` maps a link URL to the video it came from"""
        sources = sources or {}
        if self.format_type == 'json':
            return self._format_json(records, sources, changes)
        return self._format_text(records, sources, changes)

    def format_suggestion(self, original_url: str, result: SuggestionResult) -> str:
        if self.format_type == 'json':
            return json.dumps(dict(result.to_dict(), original_url=original_url), indent=2)

        lines = [f'🔗 {original_url}', f'   Search: "{result.search_query}"']
        if not result.success:
            retry = ' (temporary, try again later)' if result.retryable else ''
            lines.append(f'❌ {result.error}{retry}')
            return '\n'.join(lines)

        best = result.best_match
        price = f' - {best.price}' if best.price else ''
        lines.append(f'✅ {best.title}{price}')
        lines.append(f'   └─ {result.suggested_url}')
        lines.append(f'   Confidence: {best.confidence_score} ({result.confidence_level})')
        if self.verbose and result.alternatives:
            lines.append('   Alternatives:')
            for alt in result.alternatives:
                lines.append(f'   ├─ {alt.title[:60]} ({alt.product_id}, {alt.confidence_score})')
        return '\n'.join(lines)

    def _loss(self, record: LinkRecord, source: Optional[Dict]) -> Optional[float]:
        if not source or source.get('view_count') is None:
            return None
        return estimate_monthly_loss(source['view_count'], record.status, self.revenue_settings,
                                     source.get('video_age_months'))

    def _by_loss(self, records: List[LinkRecord], sources: Dict[str, Dict]) -> List[LinkRecord]:
        """Costliest links first; links without an estimate keep their order at the end"""
        return sorted(records, key=lambda r: _loss_order(self._loss(r, sources.get(r.url))))

    def _format_json(self, records: List[LinkRecord], sources: Dict[str, Dict],
                     changes: Optional[List[Dict]]) -> str:
        """Format results as JSON"""
        by_status = {status.value: 0 for status in LinkStatus}
        links = []
        for record in records:
            by_status[record.status.value] += 1
            entry = record.to_dict()
            source = sources.get(record.url)
            if source:
                entry['source_title'] = source.get('title')
                entry['source_url'] = source.get('url')
            entry['estimated_monthly_loss'] = self._loss(record, source)
            links.append(entry)

        output = {
            'summary': {
                'total_links': len(records),
                'ok': by_status[LinkStatus.OK.value],
                'broken': sum(1 for r in records if r.status.is_broken),
                'needs_review': sum(1 for r in records if r.status.needs_review),
                'from_cache': sum(1 for r in records if r.from_cache),
                'by_status': by_status,
                'estimated_monthly_loss': round(sum(link['estimated_monthly_loss'] or 0 for link in links), 2),
                'check_time': datetime.now().isoformat(),
            },
            'issues': sorted(
                (link for link in links if link['status'] != LinkStatus.OK.value),
                key=lambda link: _loss_order(link['estimated_monthly_loss']),
            ),
        }
        if self.verbose:
            output['links'] = links
        if changes is not None:
            output['changes'] = changes
        return json.dumps(output, indent=2)

    def _group(self, records: List[LinkRecord], sources: Dict[str, Dict]) -> Dict[str, List[LinkRecord]]:
        groups: Dict[str, List[LinkRecord]] = {}
        for record in records:
            source = sources.get(record.url) or {}
            groups.setdefault(source.get('title') or UNGROUPED, []).append(record)
        return groups

    def _format_text(self, records: List[LinkRecord], sources: Dict[str, Dict],
                     changes: Optional[List[Dict]]) -> str:
        """Format results as human-readable text"""
        if not records:
            return 'No affiliate links found in the provided sources.'

        working = [r for r in records if r.status is LinkStatus.OK]
        broken = self._by_loss([r for r in records if r.status.is_broken], sources)
        review = self._by_loss([r for r in records if r.status.needs_review and not r.status.is_broken], sources)

        output_lines = []

        if broken:
            output_lines.append(f'🚨 BROKEN LINKS FOUND ({len(broken)} issues)')
            output_lines.append('')
            output_lines.append('❌ BROKEN LINKS:')
            output_lines.extend(self._text_section(broken, sources, show_reason=True))

        if review:
            output_lines.append('⚠️  NEEDS REVIEW:')
            output_lines.extend(self._text_section(review, sources, show_reason=True))

        if self.verbose and working:
            output_lines.append('✅ WORKING LINKS:')
            output_lines.extend(self._text_section(working, sources, show_reason=False))

        if changes:
            output_lines.append('🔄 CHANGED SINCE LAST RUN:')
            for change in changes:
                output_lines.append(f"  ├─ {change['url']}: {change['previous']} → {change['current']}")
            output_lines.append('')

        losses = [self._loss(r, sources.get(r.url)) for r in records]
        total_loss = sum(loss for loss in losses if loss)

        if not broken and not review:
            output_lines.append(f'✅ All links are working properly ({len(working)} links checked)')
        else:
            output_lines.append(
                f'📊 SUMMARY: {len(working)} working, {len(broken)} broken, {len(review)} need review'
            )
        if total_loss:
            output_lines.append(f'💸 Estimated commission at risk: ${total_loss:,.2f}/month')

        return '\n'.join(output_lines)

    def _text_section(self, records: List[LinkRecord], sources: Dict[str, Dict], show_reason: bool) -> List[str]:
        lines = []
        for source_title, group in self._group(records, sources).items():
            icon = '🔗' if source_title == UNGROUPED else '📺'
            lines.append(f'{icon} "{source_title}"')
            for record in group:
                link_title = (sources.get(record.url) or {}).get('link_title')
                label = f'{link_title} - ' if link_title and link_title != 'Link' else ''
                cached = ' (cached)' if record.from_cache else ''
                lines.append(f'  ├─ {STATUS_ICONS[record.status]} {label}{record.url}{cached}')
                if show_reason:
                    lines.append(f'     └─ {record.status.value}: {record.reason}')
            lines.append('')
        return lines
