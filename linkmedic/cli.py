"""
LinkMedic - audit affiliate links in video descriptions and suggest replacements
"""

import argparse
import logging
import sys
from typing import Dict, List, Tuple

from .audit import AuditCoordinator
from .cache import build_cache
from .config import Config
from .errors import FetchError, LinkMedicError
from .fetch import build_fetcher
from .models import SearchContext, SuggestionRequest
from .prober import Prober
from .ratelimit import TokenBucket
from .report import OutputFormatter, load_state, save_state, status_changes
from .search import ReplacementSearcher
from .sources import VideoSource, age_in_months
from .suggest import SuggestionCoordinator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='linkmedic',
        description='LinkMedic - Audit affiliate links in video descriptions and suggest replacements'
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--config',
        default='config.yaml',
        help='Path to YAML configuration file (default: config.yaml)'
    )
    common.add_argument(
        '--format',
        choices=['text', 'json'],
        default='text',
        help='Output format (default: text)'
    )
    common.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show detailed output including working links'
    )
    common.add_argument(
        '--debug',
        action='store_true',
        help='Log debug output from every component'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    audit = subparsers.add_parser('audit', parents=[common], help='Check affiliate links')
    audit.add_argument('urls', nargs='*', help='Links to check (default: every link in the configured sources)')
    audit.add_argument('--state', help='JSON file holding statuses from the previous run')
    audit.add_argument('--suggest', action='store_true', help='Look for replacements for broken links')

    suggest = subparsers.add_parser('suggest', parents=[common], help='Find a replacement for one link')
    suggest.add_argument('url', help='The broken affiliate link')
    suggest.add_argument('--title', required=True, help='Title of the video the link appears in')
    suggest.add_argument('--description', default='', help='Video description, or the part around the link')
    suggest.add_argument('--tag', help='Affiliate tag for the suggested link (default: from config)')
    suggest.add_argument('--exclude', nargs='*', default=[], metavar='ID',
                         help='Product ids not to suggest again')
    return parser


def collect_links(config: Config, fetcher, verbose: bool = False) -> Tuple[List[str], Dict[str, Dict]]:
    """Links from the configured videos and plain link list, with where each one came from"""
    links: List[str] = []
    sources: Dict[str, Dict] = {}
    video_source = VideoSource(fetcher, api_key=config.settings.get('youtube_api_key'))

    for entry in config.youtube_videos:
        if isinstance(entry, str):
            entry = {'url': entry}
        try:
            video = video_source.fetch(entry['url'], entry.get('title'))
        except (FetchError, ValueError) as e:
            print(f"⚠️  Could not read video {entry.get('url')}: {e}")
            continue
        if verbose:
            print(f"  📺 {video.title[:50]} - {len(video.links)} links")
        view_count = entry.get('view_count', video.view_count)
        for link in video.links:
            if link['url'] in sources:
                continue
            links.append(link['url'])
            sources[link['url']] = {
                'title': video.title,
                'url': video.url,
                'description': video.description,
                'link_title': link['title'],
                'view_count': view_count,
                'video_age_months': age_in_months(video.published_at),
            }

    for url in config.links:
        if url not in sources and url not in links:
            links.append(url)
    return links, sources


def run_audit(args, config: Config, formatter: OutputFormatter) -> int:
    settings = config.settings
    fetcher = build_fetcher(settings)

    if args.urls:
        links, sources = list(args.urls), {}
    else:
        if args.verbose:
            print('🔍 EXTRACTING LINKS FROM SOURCES...')
        links, sources = collect_links(config, fetcher, args.verbose)

    if not links:
        print('No affiliate links found in the provided sources.')
        return 0

    prober = Prober(fetcher, build_cache(settings), config.signatures, settings.get('affiliate_tag'))
    coordinator = AuditCoordinator(prober, settings['concurrent_requests'])

    def progress(completed, total):
        print(f'  [{completed}/{total}] checked', end='\r' if completed < total else '\n')

    if args.verbose:
        print(f'\n🔗 CHECKING {len(links)} AFFILIATE LINKS...')
    records = coordinator.audit_links(links, on_progress=progress if args.verbose else None)

    changes = None
    if args.state:
        changes = status_changes(load_state(args.state), records)
        save_state(args.state, records)

    if args.verbose:
        print('\n' + '=' * 50)
    print(formatter.format_results(records, sources, changes))

    broken = [r for r in records if r.status.is_broken]
    if args.suggest and broken:
        suggest_for(broken, sources, config, fetcher, formatter)
    return 1 if broken else 0


def suggest_for(records, sources: Dict[str, Dict], config: Config, fetcher, formatter: OutputFormatter) -> None:
    settings = config.settings
    coordinator = build_suggestion_coordinator(config, fetcher)
    requests = []
    for record in records:
        source = sources.get(record.url) or {}
        requests.append(SuggestionRequest(
            original_url=record.url,
            search_context=SearchContext(source.get('title', ''), source.get('description', '')),
            affiliate_tag=settings.get('affiliate_tag') or '',
        ))
    print('\n💡 SUGGESTED REPLACEMENTS:')
    for request, result in zip(requests, coordinator.find_replacements(requests)):
        print(formatter.format_suggestion(request.original_url, result))
        print('')


def build_suggestion_coordinator(config: Config, fetcher) -> SuggestionCoordinator:
    settings = config.settings
    searcher = ReplacementSearcher(fetcher, settings['max_search_results'], config.signatures)
    limiter = TokenBucket(settings['suggestion_rate_per_second'])
    return SuggestionCoordinator(searcher, limiter, settings['min_confidence'])


def run_suggest(args, config: Config, formatter: OutputFormatter) -> int:
    tag = args.tag or config.settings.get('affiliate_tag') or ''
    if not tag:
        print('⚠️  No affiliate tag given, the suggested link will not earn commission')
    coordinator = build_suggestion_coordinator(config, build_fetcher(config.settings))
    request = SuggestionRequest(
        original_url=args.url,
        search_context=SearchContext(args.title, args.description),
        affiliate_tag=tag,
        exclude_product_ids=frozenset(args.exclude),
    )
    result = coordinator.find_replacement(request)
    print(formatter.format_suggestion(args.url, result))
    return 0 if result.success else 1


def main(argv=None):
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        # A config file is optional when the links are given on the command line
        required = args.command == 'audit' and not args.urls
        config = Config(args.config, required=required)
        formatter = OutputFormatter(args.verbose, args.format)

        if args.command == 'audit':
            code = run_audit(args, config, formatter)
        else:
            code = run_suggest(args, config, formatter)
        sys.exit(code)

    except KeyboardInterrupt:
        print('\n⏹️  Stopped by user')
        sys.exit(130)
    except LinkMedicError as e:
        print(f'❌ Error: {e}')
        sys.exit(2)
    except Exception as e:
        print(f'❌ Unexpected error: {e}')
        if args.debug:
            import traceback
            traceback.print_exc()
        sys.exit(2)


if __name__ == '__main__':
    main()
