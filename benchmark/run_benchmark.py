# -*- coding: utf-8 -*-
"""
Matcher Benchmark - Labelled Queries

Runs the product matcher over a CSV of labelled vision outputs and reports
how often the expected catalog entry is ranked first / returned at all.

Input CSV columns:
    part_name, description, keywords (separated by '|'), expected_id

Usage:
    python -m benchmark.run_benchmark path/to/queries.csv
"""
import csv
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, List

# Add parent directory to path so we can import project modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from matcher import ProductMatcher, RetrievalError, get_confidence
from mongodb_client import MongoCatalog, get_catalog_collection

# ============================================================================
# CONFIGURATION
# ============================================================================

OUTPUT_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)))
MAX_WORKERS = 5
KEYWORD_SEPARATOR = '|'

OUTPUT_COLUMNS = [
    'part_name', 'expected_id',
    'top_id', 'top_name', 'top_similarity', 'confidence',
    'result_count', 'expected_rank', 'hit_top1', 'hit_top10', 'error',
]


def load_input_csv(path: str) -> List[Dict]:
    """Load the labelled query CSV into a list of dicts."""
    rows = []
    with open(path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        for row in reader:
            rows.append(row)
    return rows


def parse_keywords(raw: str) -> List[str]:
    return [kw.strip() for kw in (raw or '').split(KEYWORD_SEPARATOR) if kw.strip()]


def process_row(row: Dict, matcher: ProductMatcher) -> Dict:
    """Match a single CSV row and return the output row dict."""
    expected_id = (row.get('expected_id') or '').strip()
    result = {
        'part_name': row.get('part_name', ''),
        'expected_id': expected_id,
        'top_id': '',
        'top_name': '',
        'top_similarity': '',
        'confidence': 'NO_MATCH',
        'result_count': 0,
        'expected_rank': '',
        'hit_top1': False,
        'hit_top10': False,
        'error': '',
    }

    try:
        ranked = matcher.match_product(
            row.get('part_name'),
            row.get('description'),
            parse_keywords(row.get('keywords', '')),
        )
    except RetrievalError as e:
        result['confidence'] = 'ERROR'
        result['error'] = str(e)
        return result

    result['result_count'] = len(ranked)
    if ranked:
        top = ranked[0]
        result['top_id'] = top.id
        result['top_name'] = top.name
        result['top_similarity'] = top.similarity
        result['confidence'] = get_confidence(top.similarity)

    ids = [c.id for c in ranked]
    if expected_id and expected_id in ids:
        rank = ids.index(expected_id) + 1
        result['expected_rank'] = rank
        result['hit_top1'] = rank == 1
        result['hit_top10'] = True

    return result


def summarize(results: List[Dict]) -> Dict[str, float]:
    """Compute hit rates over rows that carry an expected id."""
    labelled = [r for r in results if r['expected_id']]
    total = len(labelled)
    if not total:
        return {'labelled': 0, 'top1_rate': 0.0, 'top10_rate': 0.0}
    return {
        'labelled': total,
        'top1_rate': sum(1 for r in labelled if r['hit_top1']) / total,
        'top10_rate': sum(1 for r in labelled if r['hit_top10']) / total,
    }


def main():
    print("=" * 70)
    print("Matcher Benchmark - Labelled Queries")
    print("=" * 70)

    if len(sys.argv) < 2:
        print("Usage: python -m benchmark.run_benchmark path/to/queries.csv")
        sys.exit(1)
    input_csv = sys.argv[1]

    # 1. Load input CSV
    print(f"\n[1/3] Loading input CSV...")
    if not os.path.exists(input_csv):
        print(f"ERROR: Input CSV not found: {input_csv}")
        sys.exit(1)

    rows = load_input_csv(input_csv)
    total = len(rows)
    print(f"  Loaded {total} queries")

    # 2. Match rows in parallel
    print(f"\n[2/3] Matching ({MAX_WORKERS} workers)...")
    matcher = ProductMatcher(MongoCatalog(get_catalog_collection()).search_catalog)

    start_time = time.time()
    results = []
    with ThreadPoolExecutor(max_workers=MAX_WORKERS) as executor:
        futures = [executor.submit(process_row, row, matcher) for row in rows]
        for future in as_completed(futures):
            results.append(future.result())
            completed = len(results)
            if completed % 50 == 0 or completed == total:
                elapsed = time.time() - start_time
                rate = completed / elapsed if elapsed > 0 else 0
                print(f"  [{completed}/{total}] {rate:.1f} queries/s")

    # 3. Write output CSV
    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    output_path = os.path.join(OUTPUT_DIR, f"benchmark_matches_{timestamp}.csv")

    print(f"\n[3/3] Writing output CSV...")
    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=OUTPUT_COLUMNS)
        writer.writeheader()
        for result in results:
            writer.writerow(result)
    print(f"  Output: {output_path}")

    # --- Summary stats ---
    print("\n" + "=" * 70)
    print("SUMMARY")
    print("=" * 70)

    stats = summarize(results)
    errors = sum(1 for r in results if r['confidence'] == 'ERROR')
    print(f"\nTotal queries:        {total}")
    print(f"Labelled queries:     {stats['labelled']}")
    print(f"Retrieval errors:     {errors}")
    print(f"Top-1 hit rate:       {stats['top1_rate'] * 100:.1f}%")
    print(f"Top-10 hit rate:      {stats['top10_rate'] * 100:.1f}%")

    confidence_counts = {}
    for r in results:
        confidence_counts[r['confidence']] = confidence_counts.get(r['confidence'], 0) + 1

    print(f"\nConfidence distribution:")
    for conf in ['STRONG', 'PARTIAL', 'WEAK', 'NO_MATCH', 'ERROR']:
        count = confidence_counts.get(conf, 0)
        if count > 0:
            print(f"  {conf:<10} {count:>4} ({count / total * 100:.1f}%)")

    print(f"\nDone! Total time: {time.time() - start_time:.1f}s")


if __name__ == "__main__":
    main()
