"""
Constants for the generator.

파일명, 마커 이름, Excel 한계값 등 여러 모듈이 공유하는 값.
"""

# =============================================================================
# Output
# =============================================================================

OUTPUT_EXTENSION = ".xlsx"
OUTPUT_LOCK_FILENAME = ".excel_generator.lock"
RENDER_LOG_PREFIX = "render_"
RENDER_LOG_DIR = "logs"

XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# =============================================================================
# Markers
# =============================================================================

# 수식 형태 마커 접두사 (=TBEG_REPEAT(...), =TBEG_SIZE(...), =TBEG_IMAGE(...))
FORMULA_MARKER_PREFIX = "TBEG_"

MARKER_REPEAT = "repeat"
MARKER_SIZE = "size"
MARKER_IMAGE = "image"

# ${image.name} 축약형의 네임스페이스
IMAGE_NAMESPACE = "image"

# =============================================================================
# Excel Limits
# =============================================================================

EXCEL_MAX_ROWS = 1_048_576
EXCEL_MAX_COLUMNS = 16_384
EXCEL_MAX_FUNCTION_ARGS = 255
EXCEL_MAX_FORMULA_LENGTH = 8_192

# 열 너비/행 높이 → 픽셀 환산 (기본 글꼴 Calibri 11 기준 근사값)
DEFAULT_COLUMN_WIDTH = 8.43
DEFAULT_ROW_HEIGHT = 15.0
PIXELS_PER_WIDTH_UNIT = 7
PIXELS_PER_POINT = 96 / 72

GENERAL_NUMBER_FORMAT = "General"

# "General" 셀에 숫자가 들어갈 때 부여하는 기본 숫자 서식
DEFAULT_INTEGER_FORMAT = "#,##0"  # builtin 3
DEFAULT_DECIMAL_FORMAT = "#,##0.00"  # builtin 4
