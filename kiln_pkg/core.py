import os
import time
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed

from .content import ContentSourceReader, build_collections
from .errors import BuildError, DocumentParseError, LayoutCycleError
from .feed import generate_feed
from .markdown_transform import MarkdownTransform
from .output import (ASSET, DOCUMENT, FEED, check_collisions, compute_output_path,
                     prepare_output_dir, validate_output_dir, write_document, write_text)
from .passthrough import copy_file, plan_copies, rule_files, rule_source
from .report import BuildReport
from .templates import TemplateRenderer

# Thread-local storage for TemplateRenderer instances
thread_local = threading.local()


def initializer(config, collections):
    """Initialize a TemplateRenderer in thread-local storage for each worker process."""
    thread_local.renderer = TemplateRenderer(config)
    thread_local.collections = collections


def render_file(document):
    """Render one document inside a worker process."""
    return render_document(thread_local.renderer, thread_local.collections, document)


@dataclass
class RenderResult:
    source_path: str
    content_html: Optional[str] = None
    rendered_html: Optional[str] = None
    error: Optional[BuildError] = None


def render_document(renderer, collections, document):
    """Render ``document``; pipeline errors are returned rather than raised."""
    try:
        content_html, rendered_html = renderer.render(document, collections)
    except BuildError as e:
        return RenderResult(document.source_path, error=e)
    return RenderResult(document.source_path, content_html, rendered_html)


class InfoFilter(logging.Filter):
    """Filter to allow only selected INFO messages to be shown in the console."""
    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        allowed_messages = [
            "Site build completed in",
            "Build summary:",
            "Loaded configuration from",
            "Rendering",
            "Generating feed",
            "Copying passthrough",
            "Dry run",
        ]
        return any(msg in record.getMessage() for msg in allowed_messages)


class Kiln:
    def __init__(self, config, log_dir=None, dry_run=False, quiet=False):
        self.config = config
        self.log_dir = log_dir
        self.dry_run = dry_run
        self.quiet = quiet
        self.documents = []
        self.collections = {}
        self.feed_xml = None
        self.setup_logging()

    @property
    def workers(self):
        return self.config.workers or os.cpu_count() or 1

    def setup_logging(self):
        """Set up logging configuration."""
        self.logger = logging.getLogger('Kiln')
        self.logger.setLevel(logging.DEBUG if self.log_dir else logging.INFO)

        if not self.logger.handlers:
            # Console handler with filter
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.WARNING if self.quiet else logging.INFO)
            console_handler.addFilter(InfoFilter())
            console_handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(console_handler)

            # File handler for all logs
            if self.log_dir:
                os.makedirs(self.log_dir, exist_ok=True)
                log_filename = datetime.now().strftime('kiln_%Y-%m-%d_%H-%M-%S.log')
                file_handler = logging.FileHandler(os.path.join(self.log_dir, log_filename))
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
                self.logger.addHandler(file_handler)

    def build(self):
        """
        Run the full build and return its BuildReport.

        Nothing under the output directory is touched unless loading,
        routing, rendering and the feed all finished without a fatal error.
        """
        report = BuildReport()
        start_time = time.time()
        self.logger.info("Starting site build...")
        try:
            self._build(report)
        except BuildError as e:
            report.fatal(e)
        if report.fatal_errors:
            self.logger.error("Build aborted before writing; output directory left untouched.")
        self.logger.info(f"Site build completed in {time.time() - start_time:.6f} seconds.")
        self.logger.info(f"Build summary: {report.summary()}")
        return report

    def _build(self, report):
        validate_output_dir(self.config)
        markdown = MarkdownTransform.from_config(self.config)

        documents = self.load_documents(report)
        if report.fatal_errors:
            return
        documents = self.route_documents(documents, report)
        if report.fatal_errors:
            return
        self.check_output_paths(documents)

        self.documents = documents
        self.collections = build_collections(documents)
        self.render_documents(documents, markdown, report)
        if report.fatal_errors:
            return

        self.generate_feed(report)
        if self.dry_run:
            self.logger.info("Dry run: skipping writes.")
            return
        self.write_output(report)

    def load_documents(self, report):
        reader = ContentSourceReader(self.config)
        documents = list(reader.documents(report))
        self.logger.debug(f"Loaded {len(documents)} documents from {self.config.input_dir}")
        return documents

    def route_documents(self, documents, report):
        routed = []
        for document in documents:
            try:
                document.output_path, document.url = compute_output_path(document, self.config)
            except DocumentParseError as e:
                report.document_error(e, strict=self.config.strict)
                continue
            routed.append(document)
        return routed

    def check_output_paths(self, documents):
        """Validate that every output path has a single owner, before any write."""
        entries = [
            (document.output_path, document.source_path, DOCUMENT)
            for document in documents if document.output_path is not None
        ]
        if self.config.feed is not None:
            entries.append((self.config.feed.output, 'feed', FEED))
        for rule in self.config.passthrough_rules:
            for source_file, relative in rule_files(rule, self.config):
                source = os.path.relpath(source_file, self.config.input_dir).replace(os.sep, '/')
                entries.append((relative, source, ASSET))
        check_collisions(entries)

    def render_documents(self, documents, markdown, report):
        """Render all documents using adaptive processing based on workload size."""
        if not documents:
            self.logger.warning("No documents found to render.")
            return

        # Process start-up only pays off for larger sites
        if len(documents) >= self.config.parallel_threshold and self.workers > 1:
            self.logger.info(f"Rendering {len(documents)} documents with {self.workers} worker processes")
            results = self._render_with_multiprocessing(documents, report)
        else:
            self.logger.info(f"Rendering {len(documents)} documents single-threaded")
            results = self._render_single_threaded(documents, markdown, report)

        by_path = {document.source_path: document for document in documents}
        for result in sorted(results, key=lambda r: r.source_path):
            document = by_path[result.source_path]
            if result.error is None:
                document.content_html = result.content_html
                document.rendered_html = result.rendered_html
            elif isinstance(result.error, LayoutCycleError):
                report.fatal(result.error)
            else:
                report.document_error(result.error, strict=self.config.strict)

    def _render_single_threaded(self, documents, markdown, report):
        renderer = TemplateRenderer(self.config, markdown)
        results = []
        for document in documents:
            try:
                results.append(render_document(renderer, self.collections, document))
            except Exception as e:
                report.documents_skipped += 1
                report.error(f"Unexpected error rendering: {e}", document.source_path)
        return results

    def _render_with_multiprocessing(self, documents, report):
        results = []
        with ProcessPoolExecutor(
            max_workers=self.workers,
            initializer=initializer,
            initargs=(self.config, self.collections)
        ) as executor:
            futures = {executor.submit(render_file, document): document for document in documents}
            for future in as_completed(futures):
                document = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    report.documents_skipped += 1
                    report.error(f"Unexpected error rendering: {e}", document.source_path)
        return results

    def generate_feed(self, report):
        """Build the feed from the fully rendered collection."""
        feed_config = self.config.feed
        if feed_config is None:
            self.logger.debug("Skipping feed (no feedConfig).")
            return
        collection = self.collections.get(feed_config.collection)
        if collection is None:
            report.warning(f"Feed collection '{feed_config.collection}' is empty", 'feed')
            collection = build_collections([]).get('all')
        self.feed_xml, items = generate_feed(collection, feed_config)
        report.feed_items = len(items)
        self.logger.info(f"Generating feed with {len(items)} items")

    def write_output(self, report):
        prepare_output_dir(self.config)

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {}
            for document in self.documents:
                if document.rendered_html is not None and document.output_path is not None:
                    futures[executor.submit(write_document, document, self.config)] = (DOCUMENT, document.source_path)
            for rule in self.config.passthrough_rules:
                if not os.path.exists(rule_source(rule, self.config)):
                    report.warning("Passthrough source does not exist", rule.source)
                    continue
                self.logger.info(f"Copying passthrough {rule.source} -> {rule.destination}")
            # One copy per target; overlapping rules resolve to the last one
            for relative, (source_file, rule) in plan_copies(self.config.passthrough_rules, self.config).items():
                futures[executor.submit(copy_file, source_file, relative, self.config)] = (ASSET, rule.source)

            for future in as_completed(futures):
                kind, source = futures[future]
                try:
                    result = future.result()
                except (IOError, OSError) as e:
                    report.error(f"Failed to write output: {e}", source)
                    continue
                if kind == DOCUMENT:
                    report.documents_written += 1
                    self.logger.debug(f"Generated HTML: {result}")
                else:
                    report.assets_copied += 1

        if self.feed_xml is not None:
            feed_path = os.path.join(self.config.output_dir, *self.config.feed.output.split('/'))
            try:
                write_text(feed_path, self.feed_xml)
            except (IOError, OSError) as e:
                report.error(f"Failed to write feed: {e}", self.config.feed.output)
