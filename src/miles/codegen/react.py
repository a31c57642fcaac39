"""
React client generator.

Generates a Vite + TypeScript project from the AppSpec:

- src/api: types, fetch client, TanStack Query hooks (optimistic mutations)
- src/queries: one Query component per model (render-prop loading/error/data)
- src/views: presentational list and detail Views
- src/controllers: Controllers wiring Query components and mutations into Views
- src/router.tsx: route table mapping resources to controllers
"""

from __future__ import annotations

import json
from pathlib import Path
from textwrap import dedent
from typing import Any
from urllib.parse import urlsplit

from miles._version import __version__
from miles.codegen.generator import CompositeGenerator, Generator, GeneratorResult
from miles.runtime.query_builder import DEFAULT_PAGE_SIZE
from miles.specs import AppSpec, EntitySpec, FieldSpec, ScalarType

GENERATED_MARK = "Generated by Miles - DO NOT EDIT"

# Type mappings from scalar types to TypeScript
TS_TYPES: dict[ScalarType, str] = {
    ScalarType.STR: "string",
    ScalarType.TEXT: "string",
    ScalarType.INT: "number",
    ScalarType.FLOAT: "number",
    ScalarType.DECIMAL: "number",
    ScalarType.BOOL: "boolean",
    ScalarType.DATE: "string",  # ISO date string
    ScalarType.DATETIME: "string",  # ISO datetime string
    ScalarType.UUID: "string",
    ScalarType.EMAIL: "string",
    ScalarType.JSON: "unknown",
}


# =============================================================================
# Naming Helpers
# =============================================================================


def pascal_case(name: str) -> str:
    """todo_items -> TodoItems"""
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def camel_case(name: str) -> str:
    """todo_items -> todoItems, TodoItem -> todoItem"""
    pascal = pascal_case(name)
    return pascal[:1].lower() + pascal[1:]


def humanize(name: str) -> str:
    """due_date -> Due date"""
    words = name.replace("_", " ").strip()
    return words[:1].upper() + words[1:]


def js(value: Any) -> str:
    """A JavaScript literal for a Python value."""
    return json.dumps(value, default=str)


def header(description: str) -> list[str]:
    return ["/**", f" * {description}", f" * {GENERATED_MARK}.", " */"]


def field_label(field: FieldSpec) -> str:
    return field.label or humanize(field.name.removesuffix("_id"))


def entity_title(entity: EntitySpec) -> str:
    return entity.label or humanize(entity.name)


def resource_title(entity: EntitySpec) -> str:
    return humanize(entity.resource)


def _comment(text: str) -> str:
    return text.replace("*/", "* /")


# =============================================================================
# Shared Base
# =============================================================================


class ReactFileGenerator(Generator):
    """Base for the React sub-generators; holds type and naming helpers."""

    def __init__(
        self,
        spec: AppSpec,
        output_dir: Path,
        api_url: str = "http://localhost:8000/api",
        dry_run: bool = False,
    ):
        super().__init__(spec, output_dir, dry_run)
        self.api_url = api_url.rstrip("/")

    def enum_type_name(self, entity: EntitySpec, field: FieldSpec) -> str:
        return f"{entity.name}{pascal_case(field.name)}"

    def ts_type(self, entity: EntitySpec, field: FieldSpec) -> str:
        """TypeScript type for a field, without nullability."""
        if field.type.kind == "enum" and field.type.enum_values:
            return self.enum_type_name(entity, field)
        if field.type.kind == "ref":
            return "string"
        return TS_TYPES.get(field.type.scalar_type or ScalarType.STR, "unknown")

    def nullable(self, field: FieldSpec) -> bool:
        return not field.required and not field.is_auto

    def writable_fields(self, entity: EntitySpec) -> list[FieldSpec]:
        return [f for f in entity.fields if not f.is_auto]

    def api_name(self, entity: EntitySpec) -> str:
        """Client object name, e.g. todoItemsApi."""
        return f"{camel_case(entity.resource)}Api"

    def keys_name(self, entity: EntitySpec) -> str:
        return f"{camel_case(entity.name)}Keys"

    def route(self, entity: EntitySpec) -> str:
        return f"/{entity.resource}"


# =============================================================================
# Project Files
# =============================================================================


class ProjectFilesGenerator(ReactFileGenerator):
    """package.json, tsconfig.json, vite config and index.html."""

    def generate(self) -> GeneratorResult:
        result = self.new_result()
        self.emit(result, "package.json", self._package_json())
        self.emit(result, "tsconfig.json", self._tsconfig())
        self.emit(result, "vite.config.ts", self._vite_config())
        self.emit(result, "index.html", self._index_html())
        self.emit(result, "src/vite-env.d.ts", self._vite_env())
        return result

    def _package_json(self) -> str:
        package = {
            "name": f"{self.spec.name.lower().replace('_', '-')}-frontend",
            "version": self.spec.version,
            "description": f"{GENERATED_MARK} (miles {__version__})",
            "private": True,
            "type": "module",
            "scripts": {
                "dev": "vite",
                "build": "tsc && vite build",
                "preview": "vite preview",
                "typecheck": "tsc --noEmit",
            },
            "dependencies": {
                "@tanstack/react-query": "^5.51.0",
                "react": "^18.3.1",
                "react-dom": "^18.3.1",
                "react-router-dom": "^6.26.0",
            },
            "devDependencies": {
                "@types/react": "^18.3.3",
                "@types/react-dom": "^18.3.0",
                "@vitejs/plugin-react": "^4.3.1",
                "typescript": "^5.5.0",
                "vite": "^5.4.0",
            },
        }
        return json.dumps(package, indent=2)

    def _tsconfig(self) -> str:
        return dedent(f"""
            // {GENERATED_MARK}.
            {{
              "compilerOptions": {{
                "target": "ES2020",
                "useDefineForClassFields": true,
                "lib": ["ES2020", "DOM", "DOM.Iterable"],
                "module": "ESNext",
                "skipLibCheck": true,
                "moduleResolution": "bundler",
                "resolveJsonModule": true,
                "isolatedModules": true,
                "noEmit": true,
                "jsx": "react-jsx",
                "strict": true,
                "noFallthroughCasesInSwitch": true
              }},
              "include": ["src"]
            }}
        """).strip()

    def _vite_config(self) -> str:
        lines = [
            *header("Vite configuration."),
            "import { defineConfig } from 'vite';",
            "import react from '@vitejs/plugin-react';",
            "",
            "export default defineConfig({",
            "  plugins: [react()],",
            "});",
        ]
        return "\n".join(lines)

    def _index_html(self) -> str:
        return dedent(f"""
            <!doctype html>
            <!-- {GENERATED_MARK} -->
            <html lang="en">
              <head>
                <meta charset="UTF-8" />
                <meta name="viewport" content="width=device-width, initial-scale=1.0" />
                <title>{self.spec.name}</title>
              </head>
              <body>
                <div id="root"></div>
                <script type="module" src="/src/main.tsx"></script>
              </body>
            </html>
        """).strip()

    def _vite_env(self) -> str:
        return "\n".join([*header("Vite client types."), '/// <reference types="vite/client" />'])


# =============================================================================
# API Layer
# =============================================================================


class ApiLayerGenerator(ReactFileGenerator):
    """src/api/types.ts, client.ts and hooks.ts."""

    def generate(self) -> GeneratorResult:
        result = self.new_result()
        self.emit(result, "src/api/types.ts", self.types_ts())
        self.emit(result, "src/api/client.ts", self.client_ts())
        self.emit(result, "src/api/hooks.ts", self.hooks_ts())
        result.add_artifact("entities", [e.name for e in self.spec.entities])
        return result

    # -------------------------------------------------------------------------
    # types.ts
    # -------------------------------------------------------------------------

    def types_ts(self) -> str:
        lines = [
            *header("TypeScript types for API entities."),
            "",
            "export interface Page<T> {",
            "  items: T[];",
            "  total: number;",
            "  page: number;",
            "  page_size: number;",
            "}",
            "",
            "export type FilterValue = string | number | boolean | null | Array<string | number>;",
            "",
            "export interface ListParams {",
            "  page?: number;",
            "  page_size?: number;",
            "  /** Comma-separated sort keys, '-' prefix for descending */",
            "  sort?: string;",
            "  include?: string[];",
            "  /** field or field__op keys, e.g. { done: false, priority__gte: 2 } */",
            "  filters?: Record<string, FilterValue>;",
            "}",
            "",
            "/** What a Query component passes to its children. */",
            "export interface QueryResult<T> {",
            "  loading: boolean;",
            "  error: Error | null;",
            "  data: T | undefined;",
            "  refetch: () => void;",
            "}",
            "",
        ]
        for entity in self.spec.entities:
            lines.extend(self._entity_types(entity))
            lines.append("")
        return "\n".join(lines)

    def _entity_types(self, entity: EntitySpec) -> list[str]:
        name = entity.name
        lines = []

        for field in entity.fields:
            if field.type.kind == "enum" and field.type.enum_values:
                values = " | ".join(js(v) for v in field.type.enum_values)
                lines.append(f"export type {self.enum_type_name(entity, field)} = {values};")
                lines.append("")

        if entity.description:
            lines.append(f"/** {_comment(entity.description)} */")
        lines.append(f"export interface {name} {{")
        for field in entity.fields:
            ts_type = self.ts_type(entity, field)
            if self.nullable(field):
                ts_type = f"{ts_type} | null"
            lines.append(f"  {field.name}: {ts_type};")
        for relation in entity.relations:
            target = relation.to_entity
            if relation.is_to_one:
                lines.append(f"  /** Loaded with include: ['{relation.name}'] */")
                lines.append(f"  {relation.name}?: {target} | null;")
            else:
                lines.append(f"  /** Loaded with include: ['{relation.name}'] */")
                lines.append(f"  {relation.name}?: {target}[];")
        lines.append("}")
        lines.append("")

        # Create type (no id, no auto timestamps)
        lines.append(f"export interface {name}Create {{")
        for field in self.writable_fields(entity):
            ts_type = self.ts_type(entity, field)
            optional = "?" if not field.required or field.default is not None else ""
            if self.nullable(field):
                ts_type = f"{ts_type} | null"
            lines.append(f"  {field.name}{optional}: {ts_type};")
        lines.append("}")
        lines.append("")

        # Update type (all optional)
        lines.append(f"export type {name}Update = Partial<{name}Create>;")
        return lines

    # -------------------------------------------------------------------------
    # client.ts
    # -------------------------------------------------------------------------

    def _log_url(self) -> str:
        parts = urlsplit(self.api_url)
        if parts.scheme and parts.netloc:
            return f"{parts.scheme}://{parts.netloc}/_miles/log"
        return "/_miles/log"

    def client_ts(self) -> str:
        type_imports = ["ListParams", "Page"]
        for entity in self.spec.entities:
            type_imports.extend([entity.name, f"{entity.name}Create", f"{entity.name}Update"])

        lines = [
            *header("HTTP client for the Miles API."),
            "import type {",
            *[f"  {name}," for name in type_imports],
            "} from './types';",
            "",
            f"export const API_BASE: string = import.meta.env.VITE_API_URL ?? {js(self.api_url)};",
            f"const LOG_URL: string = import.meta.env.VITE_LOG_URL ?? {js(self._log_url())};",
            "",
        ]
        lines.append(
            dedent("""
            export class ApiError extends Error {
              constructor(
                public status: number,
                public detail: unknown,
                public type?: string,
              ) {
                super(typeof detail === 'string' ? detail : `HTTP ${status}`);
                this.name = 'ApiError';
              }
            }

            async function request<T>(path: string, options: RequestInit = {}): Promise<T> {
              const response = await fetch(`${API_BASE}${path}`, {
                ...options,
                headers: {
                  'Content-Type': 'application/json',
                  ...options.headers,
                },
              });

              if (!response.ok) {
                const body = await response.json().catch(() => ({}));
                throw new ApiError(response.status, body.detail ?? response.statusText, body.type);
              }

              if (response.status === 204) {
                return undefined as T;
              }

              return response.json() as Promise<T>;
            }

            export function toQueryString(params?: ListParams): string {
              if (!params) return '';
              const query = new URLSearchParams();
              if (params.page) query.set('page', String(params.page));
              if (params.page_size) query.set('page_size', String(params.page_size));
              if (params.sort) query.set('sort', params.sort);
              if (params.include?.length) query.set('include', params.include.join(','));
              for (const [key, value] of Object.entries(params.filters ?? {})) {
                if (value === null) query.set(key, 'null');
                else if (Array.isArray(value)) query.set(key, value.join(','));
                else query.set(key, String(value));
              }
              const text = query.toString();
              return text ? `?${text}` : '';
            }

            /** Send a browser-side error to the server log. */
            export function reportError(message: string, details: Record<string, unknown> = {}): void {
              fetch(LOG_URL, {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({ level: 'error', message, url: window.location.href, ...details }),
              }).catch(() => undefined);
            }
            """).strip()
        )
        lines.append("")

        for entity in self.spec.entities:
            lines.extend(self._client_methods(entity))
            lines.append("")

        lines.append("export const api = {")
        for entity in self.spec.entities:
            lines.append(f"  {camel_case(entity.resource)}: {self.api_name(entity)},")
        lines.append("};")
        return "\n".join(lines)

    def _client_methods(self, entity: EntitySpec) -> list[str]:
        name = entity.name
        route = self.route(entity)
        return [
            f"export const {self.api_name(entity)} = {{",
            f"  list: (params?: ListParams) =>",
            f"    request<Page<{name}>>(`{route}${{toQueryString(params)}}`),",
            f"  get: (id: string, include?: string[]) =>",
            f"    request<{name}>(`{route}/${{id}}${{toQueryString(include ? {{ include }} : undefined)}}`),",
            f"  create: (data: {name}Create) =>",
            f"    request<{name}>('{route}', {{ method: 'POST', body: JSON.stringify(data) }}),",
            f"  update: (id: string, data: {name}Update) =>",
            f"    request<{name}>(`{route}/${{id}}`, {{ method: 'PATCH', body: JSON.stringify(data) }}),",
            f"  replace: (id: string, data: {name}Create) =>",
            f"    request<{name}>(`{route}/${{id}}`, {{ method: 'PUT', body: JSON.stringify(data) }}),",
            f"  delete: (id: string) => request<void>(`{route}/${{id}}`, {{ method: 'DELETE' }}),",
            "};",
        ]

    # -------------------------------------------------------------------------
    # hooks.ts
    # -------------------------------------------------------------------------

    def hooks_ts(self) -> str:
        type_imports = ["ListParams", "Page"]
        for entity in self.spec.entities:
            type_imports.extend([entity.name, f"{entity.name}Create", f"{entity.name}Update"])

        lines = [
            *header("TanStack Query hooks with optimistic mutations."),
            "import { useMutation, useQuery, useQueryClient } from '@tanstack/react-query';",
            "import { " + ", ".join(self.api_name(e) for e in self.spec.entities) + " } from './client';",
            "import type {",
            *[f"  {name}," for name in type_imports],
            "} from './types';",
            "",
            "function hasFilters(params?: ListParams): boolean {",
            "  return !!params?.filters && Object.keys(params.filters).length > 0;",
            "}",
            "",
        ]
        for entity in self.spec.entities:
            lines.extend(self._entity_hooks(entity))
            lines.append("")
        return "\n".join(lines)

    def _entity_hooks(self, entity: EntitySpec) -> list[str]:
        name = entity.name
        keys = self.keys_name(entity)
        api = self.api_name(entity)
        pk = entity.primary_key.name

        return [
            f"// === {name} ===",
            "",
            f"export const {keys} = {{",
            f"  all: [{js(entity.resource)}] as const,",
            f"  lists: () => [...{keys}.all, 'list'] as const,",
            f"  list: (params: ListParams) => [...{keys}.lists(), params] as const,",
            f"  details: () => [...{keys}.all, 'detail'] as const,",
            f"  byId: (id: string) => [...{keys}.details(), id] as const,",
            f"  detail: (id: string, include: string[] = []) => [...{keys}.byId(id), include] as const,",
            "};",
            "",
            f"export function use{name}List(params: ListParams = {{}}) {{",
            "  return useQuery({",
            f"    queryKey: {keys}.list(params),",
            f"    queryFn: () => {api}.list(params),",
            "  });",
            "}",
            "",
            f"export function use{name}(id: string, include?: string[]) {{",
            "  return useQuery({",
            f"    queryKey: {keys}.detail(id, include),",
            f"    queryFn: () => {api}.get(id, include),",
            "    enabled: !!id,",
            "  });",
            "}",
            "",
            f"export function useCreate{name}() {{",
            "  const queryClient = useQueryClient();",
            "",
            "  return useMutation({",
            f"    mutationFn: (data: {name}Create) => {api}.create(data),",
            "    onMutate: async (data) => {",
            f"      await queryClient.cancelQueries({{ queryKey: {keys}.lists() }});",
            f"      const previous = queryClient.getQueriesData<Page<{name}>>({{ queryKey: {keys}.lists() }});",
            f"      const optimistic = {{ ...data, {pk}: `optimistic-${{Date.now()}}` }} as unknown as {name};",
            "      for (const [key, page] of previous) {",
            "        // only unfiltered lists are known to contain the new row",
            "        if (!page || hasFilters(key[2] as ListParams | undefined)) continue;",
            f"        queryClient.setQueryData<Page<{name}>>(key, {{",
            "          ...page,",
            "          items: [...page.items, optimistic],",
            "          total: page.total + 1,",
            "        });",
            "      }",
            "      return { previous };",
            "    },",
            "    onError: (_error, _data, context) => {",
            "      for (const [key, page] of context?.previous ?? []) {",
            "        queryClient.setQueryData(key, page);",
            "      }",
            "    },",
            "    onSettled: () => {",
            f"      queryClient.invalidateQueries({{ queryKey: {keys}.lists() }});",
            "    },",
            "  });",
            "}",
            "",
            f"export function useUpdate{name}() {{",
            "  const queryClient = useQueryClient();",
            "",
            "  return useMutation({",
            f"    mutationFn: ({{ id, data }}: {{ id: string; data: {name}Update }}) => {api}.update(id, data),",
            "    onMutate: async ({ id, data }) => {",
            f"      await queryClient.cancelQueries({{ queryKey: {keys}.all }});",
            f"      const previous = queryClient.getQueriesData<Page<{name}>>({{ queryKey: {keys}.lists() }});",
            "      // every cached detail of this id, whatever it includes",
            f"      const previousDetails = queryClient.getQueriesData<{name}>({{ queryKey: {keys}.byId(id) }});",
            "      for (const [key, page] of previous) {",
            "        if (!page) continue;",
            f"        queryClient.setQueryData<Page<{name}>>(key, {{",
            "          ...page,",
            f"          items: page.items.map((item) => (item.{pk} === id ? ({{ ...item, ...data }} as {name}) : item)),",
            "        });",
            "      }",
            "      for (const [key, detail] of previousDetails) {",
            f"        if (detail) queryClient.setQueryData<{name}>(key, {{ ...detail, ...data }} as {name});",
            "      }",
            "      return { previous, previousDetails };",
            "    },",
            "    onError: (_error, _variables, context) => {",
            "      for (const [key, page] of context?.previous ?? []) {",
            "        queryClient.setQueryData(key, page);",
            "      }",
            "      for (const [key, detail] of context?.previousDetails ?? []) {",
            "        queryClient.setQueryData(key, detail);",
            "      }",
            "    },",
            "    onSuccess: (saved, { id }) => {",
            f"      queryClient.setQueriesData<{name}>({{ queryKey: {keys}.byId(id) }}, (detail) =>",
            f"        detail ? ({{ ...detail, ...saved }} as {name}) : detail,",
            "      );",
            "    },",
            "    onSettled: () => {",
            f"      queryClient.invalidateQueries({{ queryKey: {keys}.lists() }});",
            "    },",
            "  });",
            "}",
            "",
            f"export function useDelete{name}() {{",
            "  const queryClient = useQueryClient();",
            "",
            "  return useMutation({",
            f"    mutationFn: (id: string) => {api}.delete(id),",
            "    onMutate: async (id) => {",
            f"      await queryClient.cancelQueries({{ queryKey: {keys}.lists() }});",
            f"      const previous = queryClient.getQueriesData<Page<{name}>>({{ queryKey: {keys}.lists() }});",
            "      for (const [key, page] of previous) {",
            f"        if (!page || !page.items.some((item) => item.{pk} === id)) continue;",
            f"        queryClient.setQueryData<Page<{name}>>(key, {{",
            "          ...page,",
            f"          items: page.items.filter((item) => item.{pk} !== id),",
            "          total: Math.max(0, page.total - 1),",
            "        });",
            "      }",
            "      return { previous };",
            "    },",
            "    onError: (_error, _id, context) => {",
            "      for (const [key, page] of context?.previous ?? []) {",
            "        queryClient.setQueryData(key, page);",
            "      }",
            "    },",
            "    onSuccess: (_result, id) => {",
            f"      queryClient.removeQueries({{ queryKey: {keys}.byId(id) }});",
            "    },",
            "    onSettled: () => {",
            f"      queryClient.invalidateQueries({{ queryKey: {keys}.lists() }});",
            "    },",
            "  });",
            "}",
        ]


# =============================================================================
# Query Components, Views and Controllers
# =============================================================================


class ComponentsGenerator(ReactFileGenerator):
    """Per-model Query components, Views and Controllers."""

    def generate(self) -> GeneratorResult:
        result = self.new_result()
        self.emit(result, "src/views/format.ts", self._format_ts())
        for entity in self.spec.entities:
            name = entity.name
            self.emit(result, f"src/queries/{name}Query.tsx", self.query_component(entity))
            self.emit(result, f"src/views/{name}ListView.tsx", self.list_view(entity))
            self.emit(result, f"src/views/{name}DetailView.tsx", self.detail_view(entity))
            self.emit(
                result, f"src/controllers/{name}ListController.tsx", self.list_controller(entity)
            )
            self.emit(
                result, f"src/controllers/{name}DetailController.tsx", self.detail_controller(entity)
            )
        return result

    def _format_ts(self) -> str:
        lines = [*header("Formatting and form helpers shared by the views.")]
        lines.append(
            dedent("""
            export function formatValue(value: unknown): string {
              if (value === null || value === undefined) return '';
              if (typeof value === 'boolean') return value ? 'Yes' : 'No';
              if (typeof value === 'object') return JSON.stringify(value);
              return String(value);
            }

            export function readString(form: FormData, name: string): string {
              return String(form.get(name) ?? '');
            }

            export function readOptionalString(form: FormData, name: string): string | null {
              const value = readString(form, name).trim();
              return value === '' ? null : value;
            }

            export function readNumber(form: FormData, name: string): number {
              return Number(form.get(name) ?? 0);
            }

            export function readOptionalNumber(form: FormData, name: string): number | null {
              const value = readString(form, name).trim();
              return value === '' ? null : Number(value);
            }

            export function readJSON(form: FormData, name: string): unknown {
              const value = readString(form, name).trim();
              return value === '' ? null : JSON.parse(value);
            }
            """).strip()
        )
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Query component
    # -------------------------------------------------------------------------

    def query_component(self, entity: EntitySpec) -> str:
        name = entity.name
        lines = [
            *header(f"Query components for {name}: fetch data, render children with the result."),
            "import type { ReactNode } from 'react';",
            f"import {{ use{name}, use{name}List }} from '../api/hooks';",
            f"import type {{ ListParams, Page, QueryResult, {name} }} from '../api/types';",
            "",
            f"export interface {name}ListQueryProps {{",
            "  params?: ListParams;",
            f"  children: (result: QueryResult<Page<{name}>>) => ReactNode;",
            "}",
            "",
            f"export function {name}ListQuery({{ params, children }}: {name}ListQueryProps) {{",
            f"  const query = use{name}List(params);",
            "  return (",
            "    <>",
            "      {children({",
            "        loading: query.isPending,",
            "        error: query.error,",
            "        data: query.data,",
            "        refetch: () => void query.refetch(),",
            "      })}",
            "    </>",
            "  );",
            "}",
            "",
            f"export interface {name}QueryProps {{",
            "  id: string;",
            "  include?: string[];",
            f"  children: (result: QueryResult<{name}>) => ReactNode;",
            "}",
            "",
            f"export function {name}Query({{ id, include, children }}: {name}QueryProps) {{",
            f"  const query = use{name}(id, include);",
            "  return (",
            "    <>",
            "      {children({",
            "        loading: query.isPending,",
            "        error: query.error,",
            "        data: query.data,",
            "        refetch: () => void query.refetch(),",
            "      })}",
            "    </>",
            "  );",
            "}",
        ]
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def list_view(self, entity: EntitySpec) -> str:
        name = entity.name
        pk = entity.primary_key.name
        columns = [f for f in entity.fields if not f.primary_key]

        lines = [
            *header(f"List view for {name} (presentational, props only)."),
            f"import type {{ {name} }} from '../api/types';",
            "import { formatValue } from './format';",
            "",
            f"export interface {name}ListViewProps {{",
            f"  items: {name}[];",
            "  total: number;",
            "  page?: number;",
            "  pageSize?: number;",
            "  loading?: boolean;",
            "  error?: Error | null;",
            f"  onSelect?: (item: {name}) => void;",
            f"  onDelete?: (item: {name}) => void;",
            "  onCreate?: () => void;",
            "  onPageChange?: (page: number) => void;",
            "}",
            "",
            f"export function {name}ListView({{",
            "  items,",
            "  total,",
            "  page = 1,",
            f"  pageSize = {DEFAULT_PAGE_SIZE},",
            "  loading = false,",
            "  error = null,",
            "  onSelect,",
            "  onDelete,",
            "  onCreate,",
            "  onPageChange,",
            f"}}: {name}ListViewProps) {{",
            "  const pages = Math.max(1, Math.ceil(total / pageSize));",
            "",
            "  return (",
            f'    <section className="miles-list" data-model={js(name)}>',
            "      <header>",
            f"        <h2>{{{js(resource_title(entity))}}}</h2>",
            "        {onCreate && (",
            '          <button type="button" onClick={onCreate}>',
            "            New",
            "          </button>",
            "        )}",
            "      </header>",
            '      {error && <div role="alert">{error.message}</div>}',
            "      {loading && <p>Loading...</p>}",
            "      <table>",
            "        <thead>",
            "          <tr>",
        ]
        for field in columns:
            lines.append(f"            <th>{{{js(field_label(field))}}}</th>")
        lines.extend(
            [
                "            <th />",
                "          </tr>",
                "        </thead>",
                "        <tbody>",
                "          {items.map((item) => (",
                f"            <tr key={{item.{pk}}} onClick={{() => onSelect?.(item)}}>",
            ]
        )
        for field in columns:
            lines.append(f"              <td>{{formatValue(item.{field.name})}}</td>")
        lines.extend(
            [
                "              <td>",
                "                {onDelete && (",
                "                  <button",
                '                    type="button"',
                "                    onClick={(event) => {",
                "                      event.stopPropagation();",
                "                      onDelete(item);",
                "                    }}",
                "                  >",
                "                    Delete",
                "                  </button>",
                "                )}",
                "              </td>",
                "            </tr>",
                "          ))}",
                "        </tbody>",
                "      </table>",
                "      {onPageChange && pages > 1 && (",
                "        <nav>",
                '          <button type="button" disabled={page <= 1} onClick={() => onPageChange(page - 1)}>',
                "            Previous",
                "          </button>",
                "          <span>",
                "            {page} / {pages}",
                "          </span>",
                '          <button type="button" disabled={page >= pages} onClick={() => onPageChange(page + 1)}>',
                "            Next",
                "          </button>",
                "        </nav>",
                "      )}",
                "    </section>",
                "  );",
                "}",
            ]
        )
        return "\n".join(lines)

    def _form_input(self, entity: EntitySpec, field: FieldSpec) -> list[str]:
        """Input element(s) for one writable field."""
        fname = field.name
        label = js(field_label(field))
        default = field.default
        scalar = field.type.scalar_type
        required = " required" if field.required else ""

        if field.type.kind == "enum" and field.type.enum_values:
            fallback = default if default is not None else field.type.enum_values[0]
            options = [
                f"          <option value={js(v)}>{{{js(v)}}}</option>"
                for v in field.type.enum_values
            ]
            if not field.required:
                options.insert(0, '          <option value="">(none)</option>')
                fallback = default if default is not None else ""
            return [
                "      <label>",
                f"        {{{label}}}",
                f"        <select name={js(fname)} defaultValue={{item?.{fname} ?? {js(fallback)}}}>",
                *options,
                "        </select>",
                "      </label>",
            ]

        if scalar == ScalarType.BOOL:
            fallback = "true" if default is True else "false"
            return [
                "      <label>",
                f"        <input type=\"checkbox\" name={js(fname)} defaultChecked={{item?.{fname} ?? {fallback}}} />",
                f"        {{{label}}}",
                "      </label>",
            ]

        fallback_value = js(default) if default is not None else "''"
        if scalar in (ScalarType.TEXT, ScalarType.JSON):
            if scalar == ScalarType.JSON:
                fallback_json = js(js(default)) if default is not None else "''"
                value = f"item ? JSON.stringify(item.{fname} ?? null) : {fallback_json}"
            else:
                value = f"item?.{fname} ?? {fallback_value}"
            return [
                "      <label>",
                f"        {{{label}}}",
                f"        <textarea name={js(fname)} defaultValue={{{value}}}{required} />",
                "      </label>",
            ]

        input_type = {
            ScalarType.INT: "number",
            ScalarType.FLOAT: "number",
            ScalarType.DECIMAL: "number",
            ScalarType.EMAIL: "email",
            ScalarType.DATE: "date",
        }.get(scalar, "text") if scalar else "text"
        extra = ""
        if scalar in (ScalarType.FLOAT, ScalarType.DECIMAL):
            extra = ' step="any"'
        if field.type.max_length:
            extra += f" maxLength={{{field.type.max_length}}}"
        return [
            "      <label>",
            f"        {{{label}}}",
            f"        <input type={js(input_type)} name={js(fname)} "
            f"defaultValue={{item?.{fname} ?? {fallback_value}}}{extra}{required} />",
            "      </label>",
        ]

    def _form_reader(self, entity: EntitySpec, field: FieldSpec) -> str:
        """Expression reading one field back out of the FormData."""
        fname = js(field.name)
        scalar = field.type.scalar_type
        if field.type.kind == "enum" and field.type.enum_values:
            enum_type = self.enum_type_name(entity, field)
            if field.required:
                return f"readString(form, {fname}) as {enum_type}"
            return f"readOptionalString(form, {fname}) as {enum_type} | null"
        if scalar == ScalarType.BOOL:
            return f"form.has({fname})"
        if scalar == ScalarType.JSON:
            return f"readJSON(form, {fname})"
        if scalar in (ScalarType.INT, ScalarType.FLOAT, ScalarType.DECIMAL):
            return f"readNumber(form, {fname})" if field.required else f"readOptionalNumber(form, {fname})"
        return f"readString(form, {fname})" if field.required else f"readOptionalString(form, {fname})"

    def detail_view(self, entity: EntitySpec) -> str:
        name = entity.name
        writable = self.writable_fields(entity)
        readers = {"formatValue"}
        for field in writable:
            expr = self._form_reader(entity, field)
            for helper in ("readString", "readOptionalString", "readNumber", "readOptionalNumber", "readJSON"):
                if expr.startswith(helper + "("):
                    readers.add(helper)
        enum_types = sorted(
            {
                self.enum_type_name(entity, f)
                for f in writable
                if f.type.kind == "enum" and f.type.enum_values
            }
        )

        lines = [
            *header(f"Detail view for {name} (presentational, props only)."),
            "import type { FormEvent } from 'react';",
            f"import type {{ {', '.join([name, f'{name}Update', *enum_types])} }} from '../api/types';",
            f"import {{ {', '.join(sorted(readers))} }} from './format';",
            "",
            f"export interface {name}DetailViewProps {{",
            "  /** Omitted when creating a new record */",
            f"  item?: {name};",
            "  loading?: boolean;",
            "  saving?: boolean;",
            "  error?: Error | null;",
            f"  onSave?: (data: {name}Update) => void;",
            "  onDelete?: () => void;",
            "  onBack?: () => void;",
            "}",
            "",
            f"export function {name}DetailView({{",
            "  item,",
            "  loading = false,",
            "  saving = false,",
            "  error = null,",
            "  onSave,",
            "  onDelete,",
            "  onBack,",
            f"}}: {name}DetailViewProps) {{",
            "  if (loading) return <p>Loading...</p>;",
            "",
            "  const handleSubmit = (event: FormEvent<HTMLFormElement>) => {",
            "    event.preventDefault();",
            "    const form = new FormData(event.currentTarget);",
            "    onSave?.({",
        ]
        for field in writable:
            lines.append(f"      {field.name}: {self._form_reader(entity, field)},")
        lines.extend(
            [
                "    });",
                "  };",
                "",
                "  return (",
                f'    <section className="miles-detail" data-model={js(name)}>',
                "      <header>",
                "        {onBack && (",
                '          <button type="button" onClick={onBack}>',
                "            Back",
                "          </button>",
                "        )}",
                f"        <h2>{{item ? {js(entity_title(entity))} : {js('New ' + entity_title(entity))}}}</h2>",
                "      </header>",
                '      {error && <div role="alert">{error.message}</div>}',
                "      {item && (",
                "        <dl>",
            ]
        )
        for field in entity.fields:
            if field.is_auto:
                lines.append(f"          <dt>{{{js(field_label(field))}}}</dt>")
                lines.append(f"          <dd>{{formatValue(item.{field.name})}}</dd>")
        lines.extend(["        </dl>", "      )}", "      <form onSubmit={handleSubmit}>"])
        for field in writable:
            lines.extend("  " + line for line in self._form_input(entity, field))
        lines.extend(
            [
                '        <button type="submit" disabled={saving}>',
                "          Save",
                "        </button>",
                "        {item && onDelete && (",
                '          <button type="button" onClick={onDelete}>',
                "            Delete",
                "          </button>",
                "        )}",
                "      </form>",
                "    </section>",
                "  );",
                "}",
            ]
        )
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Controllers
    # -------------------------------------------------------------------------

    def list_controller(self, entity: EntitySpec) -> str:
        name = entity.name
        pk = entity.primary_key.name
        route = self.route(entity)
        lines = [
            *header(f"Controller for the {name} list: query, mutations and navigation."),
            "import { useNavigate, useSearchParams } from 'react-router-dom';",
            f"import {{ useDelete{name} }} from '../api/hooks';",
            f"import {{ {name}ListQuery }} from '../queries/{name}Query';",
            f"import {{ {name}ListView }} from '../views/{name}ListView';",
            "",
            f"const PAGE_SIZE = {DEFAULT_PAGE_SIZE};",
            "",
            f"export function {name}ListController() {{",
            "  const navigate = useNavigate();",
            "  const [searchParams, setSearchParams] = useSearchParams();",
            "  const page = Number(searchParams.get('page') ?? '1') || 1;",
            "  const sort = searchParams.get('sort') ?? undefined;",
            f"  const remove = useDelete{name}();",
            "",
            "  return (",
            f"    <{name}ListQuery params={{{{ page, page_size: PAGE_SIZE, sort }}}}>",
            "      {({ loading, error, data }) => (",
            f"        <{name}ListView",
            "          items={data?.items ?? []}",
            "          total={data?.total ?? 0}",
            "          page={data?.page ?? page}",
            "          pageSize={data?.page_size ?? PAGE_SIZE}",
            "          loading={loading}",
            "          error={error ?? remove.error}",
            f"          onSelect={{(item) => navigate(`{route}/${{item.{pk}}}`)}}",
            f"          onCreate={{() => navigate('{route}/new')}}",
            f"          onDelete={{(item) => remove.mutate(item.{pk})}}",
            "          onPageChange={(next) => setSearchParams({ page: String(next) })}",
            "        />",
            "      )}",
            f"    </{name}ListQuery>",
            "  );",
            "}",
        ]
        return "\n".join(lines)

    def detail_controller(self, entity: EntitySpec) -> str:
        name = entity.name
        pk = entity.primary_key.name
        route = self.route(entity)
        lines = [
            *header(f"Controller for one {name}: create, edit and delete."),
            "import { useNavigate, useParams } from 'react-router-dom';",
            f"import {{ useCreate{name}, useDelete{name}, useUpdate{name} }} from '../api/hooks';",
            f"import type {{ {name}Create }} from '../api/types';",
            f"import {{ {name}Query }} from '../queries/{name}Query';",
            f"import {{ {name}DetailView }} from '../views/{name}DetailView';",
            "",
            f"export function {name}DetailController() {{",
            "  const { id = '' } = useParams();",
            "  const navigate = useNavigate();",
            f"  const create = useCreate{name}();",
            f"  const update = useUpdate{name}();",
            f"  const remove = useDelete{name}();",
            "",
            "  if (id === 'new') {",
            "    return (",
            f"      <{name}DetailView",
            "        saving={create.isPending}",
            "        error={create.error}",
            "        onSave={(data) =>",
            f"          create.mutate(data as {name}Create, {{",
            f"            onSuccess: (created) => navigate(`{route}/${{created.{pk}}}`),",
            "          })",
            "        }",
            f"        onBack={{() => navigate('{route}')}}",
            "      />",
            "    );",
            "  }",
            "",
            "  return (",
            f"    <{name}Query id={{id}}>",
            "      {({ loading, error, data }) => (",
            f"        <{name}DetailView",
            "          item={data}",
            "          loading={loading}",
            "          saving={update.isPending}",
            "          error={error ?? update.error ?? remove.error}",
            "          onSave={(changes) => update.mutate({ id, data: changes })}",
            f"          onDelete={{() => remove.mutate(id, {{ onSuccess: () => navigate('{route}') }})}}",
            f"          onBack={{() => navigate('{route}')}}",
            "        />",
            "      )}",
            f"    </{name}Query>",
            "  );",
            "}",
        ]
        return "\n".join(lines)


# =============================================================================
# Router and App Shell
# =============================================================================


class AppShellGenerator(ReactFileGenerator):
    """src/router.tsx, Layout.tsx, App.tsx and main.tsx."""

    def generate(self) -> GeneratorResult:
        result = self.new_result()
        self.emit(result, "src/router.tsx", self.router_tsx())
        self.emit(result, "src/Layout.tsx", self.layout_tsx())
        self.emit(result, "src/App.tsx", self.app_tsx())
        self.emit(result, "src/main.tsx", self.main_tsx())
        result.add_artifact(
            "routes",
            [r for e in self.spec.entities for r in (self.route(e), f"{self.route(e)}/:id")],
        )
        return result

    def router_tsx(self) -> str:
        lines = [
            *header("Route table: resources to controllers."),
            "import { createBrowserRouter, Navigate, type RouteObject } from 'react-router-dom';",
            "import { Layout } from './Layout';",
        ]
        for entity in self.spec.entities:
            name = entity.name
            lines.append(
                f"import {{ {name}ListController }} from './controllers/{name}ListController';"
            )
            lines.append(
                f"import {{ {name}DetailController }} from './controllers/{name}DetailController';"
            )
        lines.append("")
        lines.append("export const routes: RouteObject[] = [")
        lines.append("  {")
        lines.append("    path: '/',")
        lines.append("    element: <Layout />,")
        lines.append("    children: [")
        if self.spec.entities:
            first = self.route(self.spec.entities[0])
            lines.append(f"      {{ index: true, element: <Navigate to={js(first)} replace /> }},")
        for entity in self.spec.entities:
            name = entity.name
            route = self.route(entity)
            lines.append(f"      {{ path: '{route}', element: <{name}ListController /> }},")
            lines.append(f"      {{ path: '{route}/:id', element: <{name}DetailController /> }},")
        lines.append("    ],")
        lines.append("  },")
        lines.append("];")
        lines.append("")
        lines.append("export const router = createBrowserRouter(routes);")
        return "\n".join(lines)

    def layout_tsx(self) -> str:
        lines = [
            *header("Application layout with navigation."),
            "import { NavLink, Outlet } from 'react-router-dom';",
            "",
            "export function Layout() {",
            "  return (",
            '    <div className="miles-app">',
            "      <nav>",
            f"        <strong>{{{js(self.spec.name)}}}</strong>",
        ]
        for entity in self.spec.entities:
            lines.append(
                f"        <NavLink to={js(self.route(entity))}>{{{js(resource_title(entity))}}}</NavLink>"
            )
        lines.extend(
            [
                "      </nav>",
                "      <main>",
                "        <Outlet />",
                "      </main>",
                "    </div>",
                "  );",
                "}",
            ]
        )
        return "\n".join(lines)

    def app_tsx(self) -> str:
        lines = [
            *header("App root: query client and router."),
            "import { QueryClient, QueryClientProvider } from '@tanstack/react-query';",
            "import { RouterProvider } from 'react-router-dom';",
            "import { router } from './router';",
            "",
            "const queryClient = new QueryClient({",
            "  defaultOptions: {",
            "    queries: { staleTime: 30_000, retry: 1 },",
            "  },",
            "});",
            "",
            "export function App() {",
            "  return (",
            "    <QueryClientProvider client={queryClient}>",
            "      <RouterProvider router={router} />",
            "    </QueryClientProvider>",
            "  );",
            "}",
        ]
        return "\n".join(lines)

    def main_tsx(self) -> str:
        lines = [
            *header("Entry point."),
            "import { StrictMode } from 'react';",
            "import { createRoot } from 'react-dom/client';",
            "import { App } from './App';",
            "import { reportError } from './api/client';",
            "",
            "window.addEventListener('error', (event) => {",
            "  reportError(event.message, {",
            "    source: event.filename,",
            "    line: event.lineno,",
            "    column: event.colno,",
            "    stack: event.error?.stack,",
            "  });",
            "});",
            "",
            "window.addEventListener('unhandledrejection', (event) => {",
            "  reportError(String(event.reason), { stack: event.reason?.stack });",
            "});",
            "",
            "createRoot(document.getElementById('root')!).render(",
            "  <StrictMode>",
            "    <App />",
            "  </StrictMode>,",
            ");",
        ]
        return "\n".join(lines)


# =============================================================================
# Composite
# =============================================================================


class ReactGenerator(CompositeGenerator):
    """
    Generate the complete React client.

    Example:
        result = ReactGenerator(app_spec, Path("frontend"), "http://localhost:8000/api").generate()
        for path in result.files_created:
            print(path)
    """

    def __init__(
        self,
        spec: AppSpec,
        output_dir: Path,
        api_url: str = "http://localhost:8000/api",
        dry_run: bool = False,
    ):
        super().__init__(spec, output_dir, dry_run)
        self.api_url = api_url

    def get_generators(self) -> list[Generator]:
        args = (self.spec, self.output_dir, self.api_url, self.dry_run)
        return [
            ProjectFilesGenerator(*args),
            ApiLayerGenerator(*args),
            ComponentsGenerator(*args),
            AppShellGenerator(*args),
        ]

    def generate(self) -> GeneratorResult:
        if not self.spec.entities:
            result = self.new_result()
            result.add_error("No entities to generate a client for")
            return result
        return super().generate()
